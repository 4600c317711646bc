"""
validators.py のテスト
"""

import pytest
import numpy as np
import pandas as pd
from causal_tutorials import validators
from causal_tutorials.exceptions import InvalidInputError


class TestValidateArrayLengths:
    """validate_array_lengths のテスト"""

    def test_same_length(self):
        """同じ長さの配列は成功"""
        a = np.array([1, 2, 3])
        b = np.array([4, 5, 6])
        validators.validate_array_lengths(a, b)  # エラーが発生しないことを確認

    def test_different_length(self):
        """異なる長さの配列は失敗"""
        a = np.array([1, 2, 3])
        b = np.array([4, 5])

        with pytest.raises(InvalidInputError, match="Array length mismatch"):
            validators.validate_array_lengths(a, b)

    def test_with_names(self):
        """名前付きエラーメッセージ"""
        a = np.array([1, 2, 3])
        b = np.array([4, 5])

        with pytest.raises(InvalidInputError, match="y=3, X=2"):
            validators.validate_array_lengths(a, b, names=["y", "X"])

    def test_empty_input(self):
        """空の入力は成功"""
        validators.validate_array_lengths()  # エラーが発生しないことを確認


class TestValidatePositiveInteger:
    """validate_positive_integer のテスト"""

    def test_valid_positive(self):
        """正の整数は成功"""
        validators.validate_positive_integer(5, "n_samples")

    def test_zero(self):
        """ゼロは失敗（デフォルトmin_value=1）"""
        with pytest.raises(InvalidInputError):
            validators.validate_positive_integer(0, "n_samples")

    def test_negative(self):
        """負の値は失敗"""
        with pytest.raises(InvalidInputError):
            validators.validate_positive_integer(-1, "n_samples")

    def test_custom_min_value(self):
        """カスタム最小値"""
        validators.validate_positive_integer(10, "n_samples", min_value=5)

        with pytest.raises(InvalidInputError):
            validators.validate_positive_integer(3, "n_samples", min_value=5)

    def test_non_integer(self):
        """整数でない値は失敗"""
        with pytest.raises(InvalidInputError, match="must be an integer"):
            validators.validate_positive_integer(5.5, "n_samples")


class TestValidateProbability:
    """validate_probability のテスト"""

    def test_valid_probability(self):
        """有効な確率値は成功"""
        validators.validate_probability(0.5, "alpha")
        validators.validate_probability(0.0, "alpha")
        validators.validate_probability(1.0, "alpha")

    def test_out_of_range(self):
        """範囲外の値は失敗"""
        with pytest.raises(InvalidInputError, match="must be in"):
            validators.validate_probability(1.5, "alpha")

        with pytest.raises(InvalidInputError):
            validators.validate_probability(-0.1, "alpha")


class TestValidateArrayNoNaN:
    """validate_array_no_nan のテスト"""

    def test_no_nan(self):
        """NaNなしの配列は成功"""
        arr = np.array([1.0, 2.0, 3.0])
        validators.validate_array_no_nan(arr, "data")

    def test_with_nan(self):
        """NaN含む配列は失敗"""
        arr = np.array([1.0, np.nan, 3.0])

        with pytest.raises(InvalidInputError, match="contains.*NaN"):
            validators.validate_array_no_nan(arr, "data")


class TestValidateBinaryArray:
    """validate_binary_array のテスト"""

    def test_valid_binary(self):
        """有効な二値配列は成功"""
        arr = np.array([0, 1, 1, 0, 1])
        validators.validate_binary_array(arr, "treatment")

    def test_invalid_values(self):
        """0と1以外の値は失敗"""
        arr = np.array([0, 1, 2, 0])

        with pytest.raises(InvalidInputError, match="must be binary"):
            validators.validate_binary_array(arr, "treatment")


class TestValidateGammaValues:
    """validate_gamma_values のテスト"""

    def test_valid_gamma(self):
        """有効なGamma値は成功"""
        validators.validate_gamma_values([1.0, 1.5, 2.0])

    def test_empty_list(self):
        """空のリストは失敗"""
        with pytest.raises(InvalidInputError, match="must not be empty"):
            validators.validate_gamma_values([])

    def test_gamma_less_than_one(self):
        """1未満のGamma値は失敗"""
        with pytest.raises(InvalidInputError, match="must be >= 1.0"):
            validators.validate_gamma_values([0.5, 1.5])


class TestValidate2DArray:
    """validate_2d_array のテスト"""

    def test_valid_2d(self):
        """有効な2次元配列は成功"""
        arr = np.array([[1, 2], [3, 4]])
        validators.validate_2d_array(arr, "X")

    def test_1d_array(self):
        """1次元配列は失敗"""
        arr = np.array([1, 2, 3])

        with pytest.raises(InvalidInputError, match="must be a 2D array"):
            validators.validate_2d_array(arr, "X")

    def test_3d_array(self):
        """3次元配列は失敗"""
        arr = np.array([[[1, 2]], [[3, 4]]])

        with pytest.raises(InvalidInputError, match="must be a 2D array"):
            validators.validate_2d_array(arr, "X")


class TestValidateClusters:
    """validate_clusters のテスト"""

    def test_sufficient_clusters(self):
        """十分なクラスター数は成功"""
        clusters = np.array([0, 0, 1, 1, 2, 2, 3, 3])
        validators.validate_clusters(clusters, min_clusters=3)

    def test_insufficient_clusters(self):
        """不十分なクラスター数は失敗"""
        clusters = np.array([0, 0, 1, 1])

        with pytest.raises(InvalidInputError, match="Insufficient number of clusters"):
            validators.validate_clusters(clusters, min_clusters=3)


class TestValidateColumns:
    """validate_columns のテスト"""

    def test_columns_present(self):
        """必要な列がそろっていれば成功"""
        df = pd.DataFrame({'y': [1.0, 2.0], 'd': [0, 1]})
        validators.validate_columns(df, ['y', 'd'])

    def test_missing_column(self):
        """欠けている列があれば失敗"""
        df = pd.DataFrame({'y': [1.0, 2.0]})

        with pytest.raises(InvalidInputError, match="Missing column"):
            validators.validate_columns(df, ['y', 'd'], context="did_estimation")

    def test_not_dataframe(self):
        """データフレーム以外は失敗"""
        with pytest.raises(InvalidInputError, match="expects a pandas DataFrame"):
            validators.validate_columns(np.zeros((3, 2)), ['y'])


class TestValidateNumericColumns:
    """validate_numeric_columns のテスト"""

    def test_string_column(self):
        """文字列の列は失敗"""
        df = pd.DataFrame({'x': [1.0, 2.0], 'name': ['a', 'b']})

        with pytest.raises(InvalidInputError, match="must be numeric"):
            validators.validate_numeric_columns(df, ['x', 'name'])


class TestValidateUniquePanel:
    """validate_unique_panel のテスト"""

    def test_unique_panel(self):
        """(個体, 時点) が一意なら成功"""
        df = pd.DataFrame({'unit': [0, 0, 1, 1], 'time': [0, 1, 0, 1]})
        validators.validate_unique_panel(df, 'unit', 'time')

    def test_duplicated_pair(self):
        """重複した組があれば失敗"""
        df = pd.DataFrame({'unit': [0, 0, 1], 'time': [0, 0, 1]})

        with pytest.raises(InvalidInputError, match="duplicated"):
            validators.validate_unique_panel(df, 'unit', 'time')


class TestValidateProbabilityOpenInterval:
    """validate_probability(allow_bounds=False) のテスト"""

    def test_bounds_rejected(self):
        """開区間では 0 と 1 は失敗"""
        with pytest.raises(InvalidInputError, match=r"\(0, 1\)"):
            validators.validate_probability(0.0, "p", allow_bounds=False)

        with pytest.raises(InvalidInputError):
            validators.validate_probability(1.0, "p", allow_bounds=False)

    def test_bool_rejected(self):
        """bool は数値として扱わない"""
        with pytest.raises(InvalidInputError, match="must be numeric"):
            validators.validate_probability(True, "p")
