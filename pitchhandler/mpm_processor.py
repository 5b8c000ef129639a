# v1.2
import math
import logging
import numpy as np
from enum import Enum
from typing import NamedTuple, Optional, Tuple


class ConfigurationError(ValueError):
    """構築時の設定値が不正な場合に送出される例外。"""


class PitchResult(NamedTuple):
    """1ウィンドウ分の推定結果。note は 69 = A4 の連続ノート番号。"""
    note: float
    clarity: float
    frequency: float
    lag: float


class FFTTransform:
    """
    自己相関計算用の変換アダプタ (numpy.fft の実数FFT)。

    irfft は 1/n でスケーリングされるため、inverse(power) の値は
    そのまま sum(x[j] * x[j+tau]) になる（追加の正規化は不要）。
    """
    def forward(self, signal: np.ndarray, n: int) -> np.ndarray:
        return np.fft.rfft(signal, n=n)

    def inverse(self, spectrum: np.ndarray, n: int) -> np.ndarray:
        return np.fft.irfft(spectrum, n=n)


# --- Step 1: Difference Energy ---
def difference_energy(window: np.ndarray) -> np.ndarray:
    """
    m(tau) = sum(x[j]^2, j=0..W-tau-1) + sum(x[j]^2, j=tau..W-1)

    二乗の累積和テーブル cum (長さ W+1, cum[0]=0) を1回作り、
    各 tau は3回の参照で求める。
    """
    w = len(window)
    max_tau = w // 2
    cum = np.concatenate(([0.0], np.cumsum(np.square(window, dtype=np.float64))))

    tau = np.arange(max_tau)
    return cum[w - tau] + cum[w] - cum[tau]


# --- Step 2: Autocorrelation (FFT) ---
def autocorrelation(window: np.ndarray, transform: Optional[FFTTransform] = None) -> np.ndarray:
    """
    2W にゼロ埋め -> FFT -> パワースペクトル -> 逆FFT で r(tau) を求める。
    O(W^2) のラグ毎の総和を避けるためのもの。
    """
    transform = transform or FFTTransform()
    w = len(window)
    n_fft = 2 * w

    spectrum = transform.forward(np.asarray(window, dtype=np.float64), n_fft)
    power = spectrum.real ** 2 + spectrum.imag ** 2
    acf = transform.inverse(power, n_fft)
    return acf[: w // 2]


# --- Step 3: NSDF ---
def build_nsdf(m: np.ndarray, r: np.ndarray) -> np.ndarray:
    """nsdf(tau) = 2 r(tau) / m(tau)。m == 0 の位置は NaN/Inf のまま返す。"""
    with np.errstate(divide='ignore', invalid='ignore'):
        return 2.0 * r / m


# --- Step 4: Key Maximum Picking ---
class _ScanState(Enum):
    SEEKING_FIRST_CROSSING = 0
    SCANNING_LOBE = 1
    DONE = 2


def select_key_maximum(nsdf: np.ndarray, threshold: float = 0.8) -> Optional[int]:
    """
    MPM のキー最大値選択。

    1. nsdf が最初に負になる位置 (first_negative) を探す。無ければ None。
    2. first_negative 以降の全体最大値 global_max を求める。
    3. 以降の各ローブ（正区間）で最大値を追跡し、次の下向きゼロ交差で
       key_max > threshold * global_max ならそのローブの argmax を採用。
       そうでなければ key_max を 0 に戻して次のローブへ進む。
    4. どのローブも閾値を超えずに走査が終わった場合、最後に追跡していた
       ローブの argmax を返す（None にはしない）。
    """
    state = _ScanState.SEEKING_FIRST_CROSSING
    max_tau = len(nsdf)

    first_negative = -1
    global_max = 0.0
    key_max = 0.0
    key_index: Optional[int] = None

    tau = 0
    while state is not _ScanState.DONE and tau < max_tau:
        value = nsdf[tau]

        if state is _ScanState.SEEKING_FIRST_CROSSING:
            if value < 0:
                first_negative = tau
                global_max = float(np.max(nsdf[first_negative:]))
                state = _ScanState.SCANNING_LOBE

        elif state is _ScanState.SCANNING_LOBE:
            if value < 0 and nsdf[tau - 1] >= 0:
                # ローブ終端（下向きゼロ交差）
                if key_index is not None and key_max > threshold * global_max:
                    state = _ScanState.DONE
                    continue
                key_max = 0.0
            elif value > key_max:
                key_max = float(value)
                key_index = tau

        tau += 1

    if first_negative < 0:
        return None
    return key_index


# --- Step 5: Parabolic Interpolation ---
def parabolic_interpolation(nsdf: np.ndarray, tau: int) -> Tuple[float, float]:
    """
    tau の前後3点で放物線補間し (補間ラグ, 補間値) を返す。
    端の tau や a == 0（平坦/直線）の場合は整数ラグと生の値を返す。
    """
    center = float(nsdf[tau])
    if not 0 < tau < len(nsdf) - 1:
        return float(tau), center

    left = float(nsdf[tau - 1])
    right = float(nsdf[tau + 1])
    a = (right + left - 2.0 * center) / 2.0
    b = (right - left) / 2.0
    if a == 0:
        return float(tau), center

    offset = -b / (2.0 * a)
    return tau + offset, a * offset * offset + b * offset + center


def is_positive_integer(value) -> bool:
    """1, 2048, 2048.0 は True。0, 負数, 2.5, NaN, inf は False。"""
    try:
        return value > 0 and int(value) == value
    except (TypeError, ValueError, OverflowError):
        return False


def frequency_to_note(frequency: float, reference_pitch: float = 440.0) -> float:
    """周波数を連続ノート番号に変換 (reference_pitch = 69)。"""
    return 12.0 * math.log2(frequency / reference_pitch) + 69.0


class McLeodProcessor:
    """
    McLeod Pitch Method (NSDF) によるピッチ推定を行うクラス。

    1ウィンドウ (長さ W) から PitchResult を返す。
    信号なし・周期性なしの場合は None を返す（NaN は返さない）。
    """
    def __init__(self, sample_rate: float, window_size: int = 2048,
                 threshold: float = 0.8, reference_pitch: float = 440.0,
                 transform: Optional[FFTTransform] = None):
        if not math.isfinite(sample_rate) or sample_rate <= 0:
            raise ConfigurationError(f"sample_rate must be positive: {sample_rate}")
        if not is_positive_integer(window_size):
            raise ConfigurationError(f"window_size must be a positive integer: {window_size}")
        if not 0 < threshold <= 1:
            raise ConfigurationError(f"key threshold must be in (0, 1]: {threshold}")
        if not math.isfinite(reference_pitch) or reference_pitch <= 0:
            raise ConfigurationError(f"reference_pitch must be positive: {reference_pitch}")

        self.sample_rate = float(sample_rate)
        self.window_size = int(window_size)
        self.max_tau = self.window_size // 2
        self.threshold = threshold
        self.reference_pitch = reference_pitch
        self.transform = transform or FFTTransform()

    def compute_nsdf(self, window: np.ndarray) -> np.ndarray:
        m = difference_energy(window)
        r = autocorrelation(window, self.transform)
        return build_nsdf(m, r)

    def process(self, window: np.ndarray) -> Optional[PitchResult]:
        if len(window) != self.window_size:
            raise ValueError(f"window length {len(window)} != {self.window_size}")

        m = difference_energy(window)
        if self.max_tau == 0 or not m[0] > 0:
            logging.debug("Silent window, no estimate.")
            return None

        nsdf = build_nsdf(m, autocorrelation(window, self.transform))

        tau = select_key_maximum(nsdf, self.threshold)
        if tau is None:
            logging.debug("No periodic candidate in window.")
            return None

        lag, clarity = parabolic_interpolation(nsdf, tau)
        if not (math.isfinite(lag) and math.isfinite(clarity)) or lag <= 0:
            logging.debug(f"Unusable refined lag: tau={tau}, lag={lag}, clarity={clarity}")
            return None

        frequency = self.sample_rate / lag
        note = frequency_to_note(frequency, self.reference_pitch)
        if not math.isfinite(note):
            logging.debug(f"Non-finite note: frequency={frequency}")
            return None
        return PitchResult(note=note, clarity=clarity, frequency=frequency, lag=lag)
