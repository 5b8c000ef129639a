# v2.0
import configparser
import logging
from pathlib import Path
from typing import Dict, Any

class ConfigManager:
    """
    config.ini ファイルの読み書きを管理するクラス。
    v2.0: MPM 解析用の設定項目 (ウィンドウ長, ホップ長, 履歴長, キー閾値, 基準ピッチ) に刷新。
    値の検証は PitchAnalyzer 構築時に行う。
    """
    SEC_SETTINGS = "SETTINGS"

    DEFAULTS = {
        "sample_rate": "44100",
        "window_size": "2048",
        "hop_size": "512",
        "history_size": "400",
        "key_threshold": "0.8",
        "reference_pitch": "440.0",
        "chunk_size": "1024",
        "min_clarity": "0.9",
    }

    def __init__(self, config_path: str = "config.ini"):
        self.config_path = Path(config_path)
        self.config = configparser.ConfigParser()
        self._load_config()

    def _load_config(self):
        if self.config_path.exists():
            try:
                self.config.read(self.config_path, encoding="utf-8")
            except configparser.Error as e:
                logging.error(f"Config read error: {e}")

        if not self.config.has_section(self.SEC_SETTINGS):
            self._create_default_config()

    def _create_default_config(self):
        self.config[self.SEC_SETTINGS] = dict(self.DEFAULTS)
        self._save_to_disk()

    def _save_to_disk(self):
        try:
            with open(self.config_path, "w", encoding="utf-8") as f:
                self.config.write(f)
        except OSError as e:
            logging.error(f"Config save error: {e}")

    def _set(self, key: str, value: str):
        if not self.config.has_section(self.SEC_SETTINGS):
            self.config.add_section(self.SEC_SETTINGS)
        self.config[self.SEC_SETTINGS][key] = value
        self._save_to_disk()

    # --- Stream ---
    def get_sample_rate(self) -> float:
        return self.config.getfloat(self.SEC_SETTINGS, "sample_rate", fallback=44100.0)

    def set_sample_rate(self, value: float):
        self._set("sample_rate", str(value))

    def get_chunk_size(self) -> int:
        return self.config.getint(self.SEC_SETTINGS, "chunk_size", fallback=1024)

    def set_chunk_size(self, value: int):
        self._set("chunk_size", str(value))

    # --- Analysis ---
    def get_window_size(self) -> int:
        return self.config.getint(self.SEC_SETTINGS, "window_size", fallback=2048)

    def set_window_size(self, value: int):
        self._set("window_size", str(value))

    def get_hop_size(self) -> int:
        return self.config.getint(self.SEC_SETTINGS, "hop_size", fallback=512)

    def set_hop_size(self, value: int):
        self._set("hop_size", str(value))

    def get_history_size(self) -> int:
        return self.config.getint(self.SEC_SETTINGS, "history_size", fallback=400)

    def set_history_size(self, value: int):
        self._set("history_size", str(value))

    def get_key_threshold(self) -> float:
        return self.config.getfloat(self.SEC_SETTINGS, "key_threshold", fallback=0.8)

    def set_key_threshold(self, value: float):
        self._set("key_threshold", f"{value:.2f}")

    def get_reference_pitch(self) -> float:
        return self.config.getfloat(self.SEC_SETTINGS, "reference_pitch", fallback=440.0)

    def set_reference_pitch(self, value: float):
        self._set("reference_pitch", str(value))

    # --- Display ---
    def get_min_clarity(self) -> float:
        return self.config.getfloat(self.SEC_SETTINGS, "min_clarity", fallback=0.9)

    def set_min_clarity(self, value: float):
        self._set("min_clarity", f"{value:.2f}")

    def get_all_settings_dict(self) -> Dict[str, Any]:
        """PitchDetectorへ渡すための全設定辞書を作成"""
        return {
            "sample_rate": self.get_sample_rate(),
            "window_size": self.get_window_size(),
            "hop_size": self.get_hop_size(),
            "history_size": self.get_history_size(),
            "key_threshold": self.get_key_threshold(),
            "reference_pitch": self.get_reference_pitch(),
            "chunk_size": self.get_chunk_size(),
        }
