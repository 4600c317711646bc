"""
did_analysis.py のテスト
"""

import pytest
import numpy as np
import pandas as pd

from causal_tutorials import did_analysis
from causal_tutorials.exceptions import InvalidInputError, InsufficientDataError


@pytest.fixture
def event_data(did_data) -> pd.DataFrame:
    """処置群の処置開始時点（未処置は0）を加えたパネル"""
    df = did_data.copy()
    df['g'] = np.where(df['group'] == 1, 3, 0)
    return df


class TestDIDEstimation:
    """did_estimation のテスト"""

    def test_recovers_effect(self, did_data):
        """真の ATT = 2.0 に近い"""
        result = did_analysis.did_estimation(did_data, 'y', 'd', 'time', 'unit')

        assert result['did_estimate'] == pytest.approx(2.0, abs=0.5)
        assert result['ci_lower'] < result['did_estimate'] < result['ci_upper']
        assert result['n_treated'] == 100
        assert result['n_control'] == 100

    def test_regression_matches_means(self, did_data):
        """交差項の係数は4つの平均から計算した差の差と一致"""
        result = did_analysis.did_estimation(did_data, 'y', 'd', 'time', 'unit')
        means = result['means']

        manual = (means['treated_post'] - means['treated_pre']) - (means['control_post'] - means['control_pre'])

        assert result['did_coefficient'] == pytest.approx(manual)
        assert result['did_estimate'] == pytest.approx(manual)

    def test_explicit_periods(self, did_data):
        """期間を明示すると観測数が変わる"""
        result = did_analysis.did_estimation(did_data, 'y', 'd', 'time', 'unit',
                                             pre_period=(2, 2), post_period=(3, 3))

        assert result['n_observations'] == 400
        assert result['parallel_trends_test']['result'] == "Inconclusive"

    def test_single_period(self, did_data):
        """時点が1つだけならエラー"""
        with pytest.raises(InsufficientDataError):
            did_analysis.did_estimation(did_data[did_data['time'] == 0], 'y', 'd', 'time', 'unit')

    def test_missing_column(self, did_data):
        """存在しない列はエラー"""
        with pytest.raises(InvalidInputError):
            did_analysis.did_estimation(did_data, 'wage', 'd', 'time', 'unit')

    def test_alpha_passed_to_parallel_trends(self, did_data):
        """指定した有意水準で平行トレンドを判定する"""
        result = did_analysis.did_estimation(did_data, 'y', 'd', 'time', 'unit', alpha=0.5)
        trends = result['parallel_trends_test']

        assert trends['result'] == ("Pass" if trends['p_value'] > 0.5 else "Fail")
        assert "> 0.5）" in trends['interpretation'] or "< 0.5）" in trends['interpretation']


class TestParallelTrendsTest:
    """parallel_trends_test のテスト"""

    def test_result_structure(self, did_data):
        """処置前3期で検定できる"""
        result = did_analysis.parallel_trends_test(did_data, 'y', 'unit', 'time', 'group', (0, 2))

        assert result['result'] in ("Pass", "Fail")
        assert 0 <= result['p_value'] <= 1

    def test_detects_diverging_trends(self, did_data):
        """処置群だけ処置前からトレンドが急なら棄却される"""
        df = did_data.copy()
        df['y'] = df['y'] + 2.0 * df['group'] * df['time']

        result = did_analysis.parallel_trends_test(df, 'y', 'unit', 'time', 'group', (0, 2))

        assert result['result'] == "Fail"
        assert "❌" in result['interpretation']

    def test_single_pre_period(self, did_data):
        """処置前が1期だけなら判定不能"""
        result = did_analysis.parallel_trends_test(did_data, 'y', 'unit', 'time', 'group', (0, 0))

        assert result['result'] == "Inconclusive"
        assert np.isnan(result['p_value'])


class TestDIDWithCovariates:
    """did_with_covariates のテスト"""

    def test_covariate_effect(self, did_data):
        """共変量の係数も推定される"""
        result = did_analysis.did_with_covariates(did_data, 'y', 'd', 'time', 'unit', ['x'])

        assert result['did_estimate'] == pytest.approx(2.0, abs=0.5)
        assert result['covariate_effects']['x']['coefficient'] == pytest.approx(0.3, abs=0.15)
        assert result['covariates_used'] == ['x']

    def test_empty_covariates(self, did_data):
        """共変量なしはエラー"""
        with pytest.raises(InvalidInputError):
            did_analysis.did_with_covariates(did_data, 'y', 'd', 'time', 'unit', [])


class TestTWFE:
    """twfe_did のテスト"""

    def test_two_group_design(self, did_data):
        """処置時期が1つなら TWFE は DID と一致する"""
        twfe = did_analysis.twfe_did(did_data, 'y', 'd', 'unit', 'time')
        did = did_analysis.did_estimation(did_data, 'y', 'd', 'time', 'unit',
                                          pre_period=(0, 2), post_period=(3, 5))

        assert twfe['estimate'] == pytest.approx(did['did_estimate'], abs=1e-6)
        assert twfe['nobs'] == len(did_data)


class TestEventStudy:
    """event_study のテスト"""

    def test_dynamic_coefficients(self, event_data):
        """処置前の係数は0付近、処置後は真の効果付近"""
        result = did_analysis.event_study(event_data, 'y', 'unit', 'time', 'g', window=(-3, 2))
        coefs = result['coefficients'].set_index('Relative_Time')

        assert list(coefs.index) == [-3, -2, -1, 0, 1, 2]
        assert coefs.loc[-1, 'Coefficient'] == 0.0
        assert abs(coefs.loc[-3, 'Coefficient']) < 0.6
        for k in (0, 1, 2):
            assert coefs.loc[k, 'Coefficient'] == pytest.approx(2.0, abs=0.6)

    def test_pretrend_test(self, event_data):
        """処置前の係数に対する同時検定"""
        result = did_analysis.event_study(event_data, 'y', 'unit', 'time', 'g', window=(-3, 2))

        assert result['pretrend_test']['df'] == 2
        assert 0 <= result['pretrend_test']['p_value'] <= 1

    def test_reference_outside_window(self, event_data):
        """基準時点が窓の外ならエラー"""
        with pytest.raises(InvalidInputError):
            did_analysis.event_study(event_data, 'y', 'unit', 'time', 'g', window=(-2, 2), reference=-5)

    def test_default_window_wider_than_data(self, event_data):
        """データにない相対時点は NaN、基準時点だけが0"""
        result = did_analysis.event_study(event_data, 'y', 'unit', 'time', 'g')
        coefs = result['coefficients'].set_index('Relative_Time')

        assert list(coefs.index) == [-4, -3, -2, -1, 0, 1, 2, 3, 4]
        for k in (-4, 3, 4):
            assert np.isnan(coefs.loc[k, 'Coefficient'])
            assert np.isnan(coefs.loc[k, 'SE'])
            assert np.isnan(coefs.loc[k, 'CI_Lower'])
        assert coefs.loc[-1, 'Coefficient'] == 0.0
        assert coefs.loc[-1, 'SE'] == 0.0
        for k in (0, 1, 2):
            assert coefs.loc[k, 'Coefficient'] == pytest.approx(2.0, abs=0.6)
        assert result['pretrend_test']['df'] == 2

    def test_matches_exact_window(self, event_data):
        """空の相対時点を除いた推定はデータに合わせた窓と同じ"""
        wide = did_analysis.event_study(event_data, 'y', 'unit', 'time', 'g')
        exact = did_analysis.event_study(event_data, 'y', 'unit', 'time', 'g', window=(-3, 2))

        wide_coefs = wide['coefficients'].dropna(subset=['Coefficient']).reset_index(drop=True)
        pd.testing.assert_frame_equal(wide_coefs, exact['coefficients'])

    def test_no_treated_in_window(self, event_data):
        """処置された個体がいなければエラー"""
        untreated = event_data.assign(g=0)

        with pytest.raises(InsufficientDataError):
            did_analysis.event_study(untreated, 'y', 'unit', 'time', 'g')


class TestGroupTimeATT:
    """group_time_att / aggregate_group_time_att のテスト"""

    def test_cells(self, staggered_data):
        """各コホートについて処置前後のセルを持つ"""
        att_gt = did_analysis.group_time_att(staggered_data, 'y', 'unit', 'time', 'first_treated')

        assert set(att_gt['Group']) == {4, 6, 8}
        assert (att_gt['Relative_Time'] == att_gt['Time'] - att_gt['Group']).all()

        pre = att_gt[att_gt['Relative_Time'] < 0]
        assert pre['ATT'].abs().mean() < 0.5

    def test_dynamic_aggregation(self, staggered_data):
        """相対時点 e の効果は 2.0 + 0.5 e"""
        att_gt = did_analysis.group_time_att(staggered_data, 'y', 'unit', 'time', 'first_treated')
        dynamic = did_analysis.aggregate_group_time_att(att_gt, method="dynamic")
        table = dynamic['table'].set_index('Relative_Time')

        assert table.loc[0, 'ATT'] == pytest.approx(2.0, abs=0.5)
        assert table.loc[2, 'ATT'] == pytest.approx(3.0, abs=0.6)

    def test_simple_aggregation(self, staggered_data):
        """simple 集計は処置後セルのみ"""
        att_gt = did_analysis.group_time_att(staggered_data, 'y', 'unit', 'time', 'first_treated')
        simple = did_analysis.aggregate_group_time_att(att_gt, method="simple")

        assert (simple['table']['Relative_Time'] >= 0).all()
        assert simple['ci_lower'] < simple['overall_att'] < simple['ci_upper']

    def test_not_yet_treated(self, staggered_data):
        """未処置予定群を対照にしても推定できる"""
        att_gt = did_analysis.group_time_att(staggered_data, 'y', 'unit', 'time', 'first_treated',
                                             control_group="not_yet_treated")

        assert len(att_gt) > 0

    def test_requires_never_treated(self, staggered_data):
        """未処置群がなければ never_treated は使えない"""
        treated_only = staggered_data[staggered_data['first_treated'] > 0]

        with pytest.raises(InsufficientDataError):
            did_analysis.group_time_att(treated_only, 'y', 'unit', 'time', 'first_treated')

    def test_unknown_options(self, staggered_data):
        """未知の対照群・集計方法はエラー"""
        with pytest.raises(ValueError):
            did_analysis.group_time_att(staggered_data, 'y', 'unit', 'time', 'first_treated',
                                        control_group="synthetic")

        att_gt = did_analysis.group_time_att(staggered_data, 'y', 'unit', 'time', 'first_treated')
        with pytest.raises(ValueError):
            did_analysis.aggregate_group_time_att(att_gt, method="median")


class TestStaggeredDID:
    """staggered_did のテスト"""

    def test_summary(self, staggered_data):
        """コホート数・未処置数・全体ATT"""
        result = did_analysis.staggered_did(staggered_data, 'y', 'unit', 'time', 'first_treated')

        assert result['n_cohorts'] == 3
        assert result['n_never_treated'] == 60
        assert result['overall_att'] > 2.0
        assert [c['cohort'] for c in result['cohort_results']] == [4, 6, 8]
        assert 'Relative_Time' in result['event_study'].columns
