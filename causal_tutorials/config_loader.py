"""
設定ファイル読み込みユーティリティ
"""

import os
import logging
from pathlib import Path
from typing import Dict, Any, Optional

import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CAUSAL_TUTORIALS_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


class ConfigLoader:
    """設定ファイルを読み込んで管理するクラス"""

    _instance = None
    _config = None
    _path = None

    def __new__(cls):
        """シングルトンパターン"""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        """初期化"""
        if self._config is None:
            self._load_config()

    @staticmethod
    def _resolve_path() -> Path:
        """環境変数を優先して設定ファイルのパスを決定"""
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if env_path:
            return Path(env_path)
        return DEFAULT_CONFIG_PATH

    def _load_config(self):
        """設定ファイルを読み込む

        Raises:
            FileNotFoundError: 設定ファイルが見つからない場合
            ConfigurationError: YAML解析に失敗した場合、または辞書形式でない場合
        """
        config_path = self._resolve_path()

        if not config_path.exists():
            logger.error(f"Config file not found: {config_path}")
            raise FileNotFoundError(
                f"設定ファイルが見つかりません: {config_path}\n"
                f"expected path: {config_path.absolute()}"
            )

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"YAML parse error: {e}", exc_info=True)
            raise ConfigurationError(
                f"設定ファイルのYAML形式が無効です: {config_path}\n"
                f"エラー: {e}"
            ) from e

        if loaded is None:
            logger.warning(f"Config file is empty: {config_path}")
            loaded = {}
        elif not isinstance(loaded, dict):
            logger.error("Config file must contain a YAML mapping")
            raise ConfigurationError(
                f"設定ファイルは YAML 辞書である必要があります。"
                f"受け取った型: {type(loaded).__name__}"
            )

        self._config = loaded
        self._path = config_path
        logger.debug(f"Config loaded from {config_path}")

    @property
    def path(self) -> Optional[Path]:
        """読み込んだ設定ファイルのパス"""
        return self._path

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        ドット記法で設定値を取得

        Parameters
        ----------
        key_path : str
            設定のキーパス (例: "matching.caliper")
        default : Any
            デフォルト値

        Returns
        -------
        Any
            設定値
        """
        value = self._config

        for key in key_path.split('.'):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def get_all(self) -> Dict[str, Any]:
        """すべての設定を取得"""
        return self._config.copy()

    def reload(self):
        """設定ファイルを再読み込み"""
        self._config = None
        self._load_config()


def get_config(key_path: Optional[str] = None, default: Any = None) -> Any:
    """
    設定値を取得する便利関数

    Parameters
    ----------
    key_path : str, optional
        設定のキーパス。Noneの場合は全設定を返す
    default : Any
        デフォルト値
    """
    config = ConfigLoader()
    if key_path is None:
        return config.get_all()
    return config.get(key_path, default)


def reload_config() -> None:
    """設定を再読み込み（環境変数の変更を反映）"""
    ConfigLoader().reload()
