import logging
from pathlib import Path

__all__ = ["LOG_FORMAT", "logger", "setup_file_logging"]

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger("ai_mom")
logger.setLevel(logging.INFO)


def setup_file_logging(log_file: str | Path) -> logging.Handler:
    """パッケージロガーにファイルハンドラを追加する.

    Calling it twice with the same path returns the existing handler.
    """
    path = Path(log_file).resolve()
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and Path(
            handler.baseFilename
        ) == path:
            return handler

    path.parent.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(path, encoding="utf-8")
    fh.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    logger.addHandler(fh)
    return fh
