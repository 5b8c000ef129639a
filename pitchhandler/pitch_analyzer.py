# v2.0
import numpy as np
import logging
from typing import Any, Dict, List, Optional

from pitchhandler.mpm_processor import (
    ConfigurationError, McLeodProcessor, PitchResult, is_positive_integer,
)
from pitchhandler.pitch_history import PitchHistory

DEFAULT_SETTINGS: Dict[str, Any] = {
    "sample_rate": 44100,
    "window_size": 2048,
    "hop_size": 512,
    "history_size": 400,
    "key_threshold": 0.8,
    "reference_pitch": 440.0,
}


class PitchAnalyzer:
    """
    ピッチ解析のオーケストレーター (v2.0: MPM / スライディングウィンドウ版)。

    - 可変長のブロックを蓄積バッファに追加し、W サンプル以上溜まっている間、
      先頭 W サンプルを1ウィンドウとして McLeodProcessor に渡す。
    - 1ウィンドウ処理するごとに hop サンプルだけバッファを前に詰める
      (hop < W でオーバーラップ解析)。
    - 推定に成功した結果のみ pitch / clarity 履歴に追加する。
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.settings = dict(DEFAULT_SETTINGS)
        if config:
            self.settings.update(config)

        self.processor: Optional[McLeodProcessor] = None
        self.pitch_history: Optional[PitchHistory] = None
        self.clarity_history: Optional[PitchHistory] = None
        self.buffer = np.array([], dtype=np.float32)

        self.apply_settings()
        logging.info(
            f"PitchAnalyzer Initialized (W={self.window_size}, hop={self.hop_size}, "
            f"rate={self.sample_rate}Hz)."
        )

    def apply_settings(self):
        """設定から処理器・履歴・バッファを作り直す。検証に失敗した場合は何も変更しない。"""
        window_size = self.settings["window_size"]
        hop_size = self.settings["hop_size"]
        history_size = self.settings["history_size"]

        # 処理器側で W / sample_rate / threshold を検証する
        processor = McLeodProcessor(
            sample_rate=float(self.settings["sample_rate"]),
            window_size=window_size,
            threshold=float(self.settings["key_threshold"]),
            reference_pitch=float(self.settings["reference_pitch"]),
        )
        if not is_positive_integer(hop_size) or hop_size > window_size:
            raise ConfigurationError(f"hop_size must be in (0, window_size]: {hop_size}")

        pitch_history = PitchHistory(history_size)
        clarity_history = PitchHistory(history_size)

        self.processor = processor
        self.pitch_history = pitch_history
        self.clarity_history = clarity_history
        self.window_size = processor.window_size
        self.hop_size = int(hop_size)
        self.sample_rate = processor.sample_rate
        self.buffer = np.array([], dtype=np.float32)

    def update_settings(self, new_config: Dict[str, Any]):
        """設定を更新し、バッファと履歴を作り直す。不正な設定なら元の状態を保つ。"""
        previous = dict(self.settings)
        self.settings.update(new_config)
        try:
            self.apply_settings()
        except ConfigurationError:
            self.settings = previous
            raise

    def reset_state(self):
        self.buffer = np.array([], dtype=np.float32)
        self.pitch_history.clear()
        self.clarity_history.clear()

    @property
    def pending_samples(self) -> int:
        return len(self.buffer)

    def feed(self, block) -> List[Optional[PitchResult]]:
        """
        ブロックを追加し、取り出せたウィンドウ毎の結果（失敗時は None）を順に返す。
        """
        new_data = np.asarray(block, dtype=np.float32).ravel()
        if len(new_data) > 0:
            self.buffer = np.concatenate((self.buffer, new_data))

        results: List[Optional[PitchResult]] = []
        while len(self.buffer) >= self.window_size:
            window = self.buffer[:self.window_size].copy()
            result = self.processor.process(window)

            if result is not None:
                self.pitch_history.push(result.note)
                self.clarity_history.push(result.clarity)
            results.append(result)

            self.buffer = self.buffer[self.hop_size:]

        return results

    def process(self, raw_input_bytes: bytes) -> List[Optional[PitchResult]]:
        """PyAudio の int16 バイト列を [-1, 1) に変換して feed する。"""
        raw_ints = np.frombuffer(raw_input_bytes, dtype=np.int16)
        return self.feed(raw_ints.astype(np.float32) / 32768.0)
