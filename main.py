import logging
import sys
import time
from pathlib import Path

from config_manager import ConfigManager
from pitchhandler.mpm_processor import ConfigurationError, PitchResult
from pitchhandler.pitchdetector import PitchDetector
from utils.logger_manager import LoggerManager

# --- パス設定 ---
def get_base_dir() -> Path:
    if getattr(sys, 'frozen', False):
        return Path(sys.executable).parent
    else:
        return Path(__file__).resolve().parent

BASE_DIR = get_base_dir()
LOG_DIR = BASE_DIR / "log"
CONFIG_FILE_PATH = BASE_DIR / "config.ini"


class ConsoleTuner:
    """マイク入力の推定結果をコンソールに表示する簡易フロントエンド。"""

    def __init__(self, config_manager: ConfigManager):
        self.min_clarity = config_manager.get_min_clarity()
        self.pitch_detector = PitchDetector(
            self._on_result,
            config=config_manager.get_all_settings_dict()
        )

    def _on_result(self, result: PitchResult):
        # clarity の低い結果は表示しない（履歴には残る）
        if result.clarity < self.min_clarity: return
        print(f"{result.frequency:9.2f} Hz  note {result.note:7.2f}  clarity {result.clarity:.3f}", flush=True)

    def run(self):
        self.pitch_detector.start_stream()
        try:
            while self.pitch_detector.is_running:
                time.sleep(0.25)
        except KeyboardInterrupt:
            logging.info("Interrupted by user.")
        finally:
            self.pitch_detector.stop_stream()


def main() -> int:
    LoggerManager.setup_logging(LOG_DIR)
    try:
        return _run_tuner(ConfigManager(str(CONFIG_FILE_PATH)))
    finally:
        LoggerManager.shutdown()


def _run_tuner(config_manager: ConfigManager) -> int:
    try:
        tuner = ConsoleTuner(config_manager)
    except ConfigurationError as e:
        logging.error(f"Invalid configuration ({CONFIG_FILE_PATH}): {e}")
        return 2

    try:
        tuner.run()
    except RuntimeError as e:
        logging.error(f"マイク開始失敗: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
