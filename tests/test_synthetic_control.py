"""
synthetic_control.py のテスト
"""

import pytest
import numpy as np
import pandas as pd

from causal_tutorials import synthetic_control
from causal_tutorials.exceptions import InvalidInputError, InsufficientDataError

SYNTH_ARGS = ('unit', 'time', 'y', 'unit_00', 16)


def _noise_free_panel(units: dict) -> pd.DataFrame:
    """単位名 -> 系列（t = 0..9）からロング形式のパネルを作る"""
    return pd.DataFrame([
        {'unit': unit, 'time': t, 'y': float(value)}
        for unit, series in units.items()
        for t, value in enumerate(series)
    ])


BASE = 10.0 + np.arange(10)
SHIFTED = np.where(np.arange(10) >= 6, BASE + 5.0, BASE)
WIGGLE = BASE + np.where(np.arange(10) % 2 == 0, 1.0, -1.0)


class TestPrepareSynthData:
    """prepare_synth_data のテスト"""

    def test_wide_layout(self, synth_data):
        """処置単位が先頭列のワイド形式"""
        prepared = synthetic_control.prepare_synth_data(synth_data, *SYNTH_ARGS)

        assert prepared['wide'].columns[0] == 'unit_00'
        assert len(prepared['donors']) == 11
        assert len(prepared['pre_periods']) == 16
        assert len(prepared['post_periods']) == 8

    def test_unknown_treated_unit(self, synth_data):
        """存在しない処置単位はエラー"""
        with pytest.raises(InvalidInputError, match="not found"):
            synthetic_control.prepare_synth_data(synth_data, 'unit', 'time', 'y', 'unit_99', 16)

    def test_unbalanced_panel(self, synth_data):
        """欠けた時点があればエラー"""
        unbalanced = synth_data.drop(synth_data.index[5])

        with pytest.raises(InvalidInputError, match="unbalanced"):
            synthetic_control.prepare_synth_data(unbalanced, *SYNTH_ARGS)

    def test_too_few_pre_periods(self, synth_data):
        """処置前が2期未満ならエラー"""
        with pytest.raises(InsufficientDataError):
            synthetic_control.prepare_synth_data(synth_data, 'unit', 'time', 'y', 'unit_00', 1)


class TestFitSyntheticControl:
    """fit_synthetic_control のテスト"""

    def test_weights_on_simplex(self, synth_data):
        """ウェイトは非負で総和1"""
        result = synthetic_control.fit_synthetic_control(synth_data, *SYNTH_ARGS)

        assert (result['weights'] >= 0).all()
        assert result['weights'].sum() == pytest.approx(1.0)

    def test_recovers_effect(self, synth_data):
        """処置後のギャップの平均は真の効果 -5 に近い"""
        result = synthetic_control.fit_synthetic_control(synth_data, *SYNTH_ARGS)

        assert result['att'] == pytest.approx(-5.0, abs=1.0)
        assert result['pre_fit_quality'] in ("Good", "Fair")
        assert result['rmspe_ratio'] > 3

    def test_gap_definition(self, synth_data):
        """ギャップ = 実際 - 合成"""
        result = synthetic_control.fit_synthetic_control(synth_data, *SYNTH_ARGS)

        pd.testing.assert_series_equal(
            result['gap'], (result['actual'] - result['synthetic']).rename('gap')
        )

    def test_single_donor(self, synth_data):
        """ドナーが1つならウェイトは1"""
        result = synthetic_control.fit_synthetic_control(synth_data, *SYNTH_ARGS, donors=['unit_01'])

        assert result['weights'].tolist() == [1.0]

    def test_rmspe_ratio_undefined_for_perfect_fit(self):
        """処置前・処置後とも完全に一致すれば RMSPE 比は NaN"""
        panel = _noise_free_panel({'treated': BASE, 'copy': BASE})

        result = synthetic_control.fit_synthetic_control(panel, 'unit', 'time', 'y', 'treated', 6)

        assert result['pre_rmspe'] == 0.0
        assert np.isnan(result['rmspe_ratio'])

    def test_rmspe_ratio_infinite_for_post_gap_only(self):
        """処置前が完全に一致し処置後にだけ差があれば RMSPE 比は無限大"""
        panel = _noise_free_panel({'treated': SHIFTED, 'copy': BASE})

        result = synthetic_control.fit_synthetic_control(panel, 'unit', 'time', 'y', 'treated', 6)

        assert result['rmspe_ratio'] == np.inf
        assert result['att'] == pytest.approx(5.0)


class TestPlaceboInSpace:
    """placebo_in_space のテスト"""

    def test_treated_unit_is_extreme(self, synth_data):
        """処置単位の RMSPE 比はプラセボの中で最大級"""
        result = synthetic_control.placebo_in_space(synth_data, *SYNTH_ARGS)
        table = result['rmspe_table']

        assert result['p_value'] <= 0.2
        assert table['Rank'].tolist() == list(range(1, len(table) + 1))
        assert table['Treated'].sum() == 1
        assert 'unit_00' in result['gaps'].columns

    def test_no_threshold(self, synth_data):
        """閾値なしなら全ドナーがプラセボ"""
        result = synthetic_control.placebo_in_space(synth_data, *SYNTH_ARGS, rmspe_threshold=0)

        assert result['n_placebos'] == 11

    def test_undefined_ratios_excluded(self):
        """RMSPE 比が定義できないプラセボは順位付けに含めない"""
        panel = _noise_free_panel({'treated': SHIFTED, 'a': BASE, 'b': BASE, 'c': WIGGLE})

        result = synthetic_control.placebo_in_space(panel, 'unit', 'time', 'y', 'treated', 6,
                                                    rmspe_threshold=0)
        table = result['rmspe_table']

        assert not table['RMSPE_Ratio'].isna().any()
        assert 'c' in table['Unit'].tolist()
        assert table.loc[0, 'Unit'] == 'treated'
        assert result['p_value'] == pytest.approx(1 / len(table))
        assert list(result['gaps'].columns) == table['Unit'].tolist()

    def test_all_placebos_undefined(self):
        """同一のドナーしかなければプラセボは残らない"""
        panel = _noise_free_panel({'treated': SHIFTED, 'a': BASE, 'b': BASE})

        result = synthetic_control.placebo_in_space(panel, 'unit', 'time', 'y', 'treated', 6,
                                                    rmspe_threshold=0)

        assert result['n_placebos'] == 0
        assert result['rmspe_table']['Unit'].tolist() == ['treated']


class TestPlaceboInTime:
    """placebo_in_time のテスト"""

    def test_no_effect_before_treatment(self, synth_data):
        """処置前の仮の時点では効果はほぼ0"""
        result = synthetic_control.placebo_in_time(synth_data, *SYNTH_ARGS, placebo_time=10)

        assert result['placebo_time'] == 10
        assert abs(result['att']) < 1.5
        assert result['gap'].index.max() < 16

    def test_placebo_after_treatment(self, synth_data):
        """仮の時点は処置時点より前"""
        with pytest.raises(InvalidInputError):
            synthetic_control.placebo_in_time(synth_data, *SYNTH_ARGS, placebo_time=18)


class TestLeaveOneOut:
    """leave_one_out のテスト"""

    def test_results(self, synth_data):
        """正のウェイトを持つドナーごとに再推定"""
        result = synthetic_control.leave_one_out(synth_data, *SYNTH_ARGS)

        assert len(result['results']) >= 1
        assert (result['results']['Weight'] > 0.01).all()
        assert list(result['synthetics'].columns) == result['results']['Omitted_Donor'].tolist()
        assert result['results']['ATT'].between(-8, -2).all()
