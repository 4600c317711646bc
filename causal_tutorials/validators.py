"""
入力検証モジュール

推定関数に渡されるデータの妥当性を検証する関数を提供します。
"""

import numpy as np
import pandas as pd
from typing import Iterable, List, Optional
from .exceptions import InvalidInputError


def validate_array_lengths(*arrays: np.ndarray, names: Optional[List[str]] = None) -> None:
    """
    配列の長さが一致することを検証

    Parameters
    ----------
    *arrays : np.ndarray
        検証する配列
    names : List[str], optional
        配列の名前（エラーメッセージ用）

    Raises
    ------
    InvalidInputError
        配列の長さが一致しない場合
    """
    if not arrays:
        return

    lengths = [len(arr) for arr in arrays]
    if len(set(lengths)) > 1:
        if names:
            length_info = ", ".join(f"{name}={length}" for name, length in zip(names, lengths))
        else:
            length_info = ", ".join(str(length) for length in lengths)

        raise InvalidInputError(
            f"Array length mismatch: {length_info}. "
            f"All input arrays must have the same number of observations."
        )


def validate_positive_integer(value: int, name: str, min_value: int = 1) -> None:
    """
    正の整数であることを検証

    Raises
    ------
    InvalidInputError
        整数でない、または最小値未満の場合
    """
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise InvalidInputError(
            f"{name} must be an integer, got {type(value).__name__}"
        )

    if value < min_value:
        raise InvalidInputError(
            f"{name} must be >= {min_value}, got {value}"
        )


def validate_probability(value: float, name: str, allow_bounds: bool = True) -> None:
    """
    確率値（0-1の範囲）であることを検証

    Parameters
    ----------
    value : float
        検証する値
    name : str
        パラメータ名
    allow_bounds : bool
        False の場合は開区間 (0, 1) を要求する

    Raises
    ------
    InvalidInputError
        範囲外の値の場合
    """
    if isinstance(value, bool) or not isinstance(value, (float, int, np.floating, np.integer)):
        raise InvalidInputError(
            f"{name} must be numeric, got {type(value).__name__}"
        )

    if allow_bounds:
        if not 0.0 <= value <= 1.0:
            raise InvalidInputError(f"{name} must be in [0, 1], got {value}")
    elif not 0.0 < value < 1.0:
        raise InvalidInputError(f"{name} must be in (0, 1), got {value}")


def validate_array_no_nan(array: np.ndarray, name: str) -> None:
    """
    配列にNaNが含まれないことを検証

    Raises
    ------
    InvalidInputError
        NaNが含まれる場合
    """
    array = np.asarray(array, dtype=float)
    if np.any(np.isnan(array)):
        n_nan = int(np.sum(np.isnan(array)))
        raise InvalidInputError(
            f"{name} contains {n_nan} NaN value(s). "
            f"Please remove or impute missing values before analysis."
        )


def validate_binary_array(array: np.ndarray, name: str) -> None:
    """
    二値配列（0 or 1）であることを検証

    Raises
    ------
    InvalidInputError
        0と1以外の値が含まれる場合
    """
    unique_values = np.unique(np.asarray(array))
    valid_values = {0, 1}

    if not all(val in valid_values for val in unique_values):
        raise InvalidInputError(
            f"{name} must be binary (0 or 1), "
            f"but contains values: {sorted(unique_values.tolist())}"
        )


def validate_gamma_values(gamma_values: List[float]) -> None:
    """
    Rosenbaum bounds の Gamma 値のリストを検証

    Raises
    ------
    InvalidInputError
        空、または 1 未満の値が含まれる場合
    """
    if not gamma_values:
        raise InvalidInputError("gamma_values must not be empty")

    for gamma in gamma_values:
        if gamma < 1.0:
            raise InvalidInputError(
                f"All gamma values must be >= 1.0, got {gamma}. "
                f"Gamma represents the strength of hidden confounding."
            )


def validate_2d_array(array: np.ndarray, name: str) -> None:
    """
    2次元配列であることを検証

    Raises
    ------
    InvalidInputError
        2次元でない場合
    """
    if array.ndim != 2:
        raise InvalidInputError(
            f"{name} must be a 2D array, got {array.ndim}D. "
            f"Shape: {array.shape}"
        )


def validate_clusters(clusters: np.ndarray, min_clusters: int = 3) -> None:
    """
    クラスター配列を検証

    Raises
    ------
    InvalidInputError
        クラスター数が不足している場合
    """
    n_clusters = len(np.unique(clusters))

    if n_clusters < min_clusters:
        raise InvalidInputError(
            f"Insufficient number of clusters: got {n_clusters}, "
            f"need at least {min_clusters}. "
            f"Cluster-robust inference requires multiple clusters."
        )


def validate_columns(df: pd.DataFrame, columns: Iterable[str], context: str = "analysis") -> None:
    """
    データフレームに必要な列が存在することを検証

    Parameters
    ----------
    df : pd.DataFrame
        検証するデータ
    columns : Iterable[str]
        必要な列名
    context : str
        エラーメッセージ用のコンテキスト

    Raises
    ------
    InvalidInputError
        データフレームでない、または列が欠けている場合
    """
    if not isinstance(df, pd.DataFrame):
        raise InvalidInputError(
            f"{context} expects a pandas DataFrame, got {type(df).__name__}"
        )

    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise InvalidInputError(
            f"Missing column(s) for {context}: {missing}. "
            f"Available columns: {list(df.columns)}"
        )


def validate_numeric_columns(df: pd.DataFrame, columns: Iterable[str]) -> None:
    """数値列であることを検証"""
    non_numeric = [col for col in columns if not pd.api.types.is_numeric_dtype(df[col])]
    if non_numeric:
        raise InvalidInputError(
            f"Column(s) must be numeric: {non_numeric}"
        )


def validate_unique_panel(df: pd.DataFrame, entity_col: str, time_col: str) -> None:
    """
    パネルデータの (個体, 時点) が一意であることを検証

    Raises
    ------
    InvalidInputError
        重複した (個体, 時点) の組がある場合
    """
    duplicated = df.duplicated(subset=[entity_col, time_col])
    if duplicated.any():
        n_dup = int(duplicated.sum())
        raise InvalidInputError(
            f"Panel has {n_dup} duplicated ({entity_col}, {time_col}) pair(s). "
            f"Each unit must appear at most once per period."
        )
