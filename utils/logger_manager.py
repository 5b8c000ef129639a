# v4.0
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class LoggerManager:
    """
    チューナー用のロギング設定。

    v4.0: コンソールにはピッチの推定結果を print するため、
          コンソールハンドラは WARNING 以上のみ、ファイルには INFO 以上を残す。
          debug=True でウィンドウ毎の「推定なし」(DEBUG) もファイルに記録する。
    """
    _handlers = []

    @classmethod
    def setup_logging(cls, log_dir: Path, log_file: str = "tuner.log",
                      console_level: int = logging.WARNING, debug: bool = False) -> Path:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / log_file
        file_level = logging.DEBUG if debug else logging.INFO
        formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

        cls.shutdown()

        # 1MB x 3世代
        file_handler = RotatingFileHandler(log_path, maxBytes=1024 * 1024, backupCount=3, encoding='utf-8')
        file_handler.setLevel(file_level)

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(console_level)

        root_logger = logging.getLogger()
        root_logger.setLevel(min(file_level, console_level))
        for handler in (file_handler, console_handler):
            handler.setFormatter(formatter)
            root_logger.addHandler(handler)
            cls._handlers.append(handler)

        logging.info(f"Logging to {log_path} (file={logging.getLevelName(file_level)}, "
                     f"console={logging.getLevelName(console_level)})")
        return log_path

    @classmethod
    def shutdown(cls, root_logger: Optional[logging.Logger] = None):
        """setup_logging で追加したハンドラだけを外して閉じる。"""
        root_logger = root_logger or logging.getLogger()
        while cls._handlers:
            handler = cls._handlers.pop()
            root_logger.removeHandler(handler)
            handler.close()
