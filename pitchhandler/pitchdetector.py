# v2.0
import logging
import threading
import queue
from typing import Any, Callable, Dict, List, Optional, Tuple

try:
    import pyaudio
except ImportError:  # audio extra 未インストール時はライブ入力のみ使用不可
    pyaudio = None

from pitchhandler.pitch_analyzer import PitchAnalyzer
from pitchhandler.mpm_processor import PitchResult


class PitchDetector:
    """
    マイク入力 (PyAudio) と PitchAnalyzer を接続するクラス。

    構成:
      - PyAudio コールバック (Producer) は受け取った int16 バイト列をキューに積むだけ。
      - 解析スレッド (Consumer) がキューから取り出し、analyzer.process を実行する。
      - feed と履歴の読み出しは analysis_lock で排他する。
        (バッファのスライドと履歴追加は不可分ではないため)
    """
    CHUNK = 1024

    def __init__(self,
                 result_callback: Optional[Callable[[PitchResult], None]] = None,
                 config: Optional[Dict[str, Any]] = None):

        self.result_callback = result_callback
        self.settings: Dict[str, Any] = dict(config or {})
        self.chunk_size = int(self.settings.pop("chunk_size", self.CHUNK))

        self.analyzer = PitchAnalyzer(self.settings)

        self.pa = None
        self.stream = None
        self._is_running = False

        self.audio_queue: "queue.Queue[bytes]" = queue.Queue(maxsize=10)
        self.analysis_thread: Optional[threading.Thread] = None
        self.stop_event = threading.Event()
        self.analysis_lock = threading.Lock()

        logging.info("PitchDetector Initialized.")

    @property
    def is_running(self) -> bool:
        return self._is_running

    def update_settings(self, new_config: Dict[str, Any]):
        """ストリームを止めてから設定を適用し、必要なら再開する。"""
        was_running = self._is_running
        if was_running:
            self.stop_stream()

        with self.analysis_lock:
            self.analyzer.update_settings(new_config)

        if was_running:
            self.start_stream()

    def get_history(self) -> Tuple[List[float], List[float]]:
        """(pitch履歴, clarity履歴) のスナップショットを古い順で返す。"""
        with self.analysis_lock:
            return self.analyzer.pitch_history.values(), self.analyzer.clarity_history.values()

    def start_stream(self):
        if self.stream and self.stream.is_active(): return
        if pyaudio is None:
            raise RuntimeError("PyAudio is not installed. Install the 'audio' extra.")

        self._start_worker()
        try:
            self.pa = pyaudio.PyAudio()
            self.stream = self.pa.open(
                format=pyaudio.paInt16, channels=1,
                rate=int(self.analyzer.sample_rate),
                input=True, frames_per_buffer=self.chunk_size,
                stream_callback=self._pyaudio_callback
            )
            self.stream.start_stream()
            logging.info("Audio stream & Analysis thread started.")
        except Exception as e:
            logging.error(f"Stream start error: {e}")
            self.stop_stream()
            raise RuntimeError(f"Stream start error: {e}") from e

    def stop_stream(self):
        self._is_running = False
        self.stop_event.set()

        if self.stream:
            try:
                self.stream.stop_stream()
                self.stream.close()
            except Exception as e:
                logging.warning(f"Stream close error: {e}")
            self.stream = None

        if self.pa:
            self.pa.terminate()
            self.pa = None

        if self.analysis_thread and self.analysis_thread.is_alive():
            self.analysis_thread.join(timeout=0.5)
            if self.analysis_thread.is_alive():
                logging.warning("Analysis thread did not stop within 0.5s.")
        self.analysis_thread = None
        logging.info("Audio stream stopped.")

    def submit(self, raw_data: bytes) -> bool:
        """int16 バイト列を解析キューに積む。キューが満杯なら捨てて False。"""
        try:
            self.audio_queue.put_nowait(raw_data)
            return True
        except queue.Full:
            logging.debug("Audio queue full, block dropped.")
            return False

    def _start_worker(self):
        self._is_running = True
        # ワーカー毎に新しい停止イベントを使う (前のワーカーが残っていても再開させない)
        self.stop_event = threading.Event()

        with self.analysis_lock:
            self.analyzer.reset_state()

        with self.audio_queue.mutex:
            self.audio_queue.queue.clear()

        self.analysis_thread = threading.Thread(
            target=self._analysis_loop, args=(self.stop_event,), daemon=True
        )
        self.analysis_thread.start()

    def _pyaudio_callback(self, in_data, frame_count, time_info, status):
        if not self._is_running: return (None, pyaudio.paComplete)
        self.submit(in_data)
        return (None, pyaudio.paContinue)

    def _handle_chunk(self, raw_data: bytes):
        with self.analysis_lock:
            results = self.analyzer.process(raw_data)

        if self.result_callback:
            for result in results:
                if result is not None:
                    self.result_callback(result)

    def _analysis_loop(self, stop_event: threading.Event):
        """[Consumer] 解析スレッド"""
        while not stop_event.is_set():
            try:
                raw_data = self.audio_queue.get(timeout=0.1)
            except queue.Empty:
                continue

            try:
                self._handle_chunk(raw_data)
            except Exception as e:
                # エラーが出てもループは止めない
                logging.warning(f"Analysis Loop Error: {e}")
            finally:
                self.audio_queue.task_done()
