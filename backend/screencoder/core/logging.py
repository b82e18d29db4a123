import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(log_level: str | int = logging.INFO) -> None:
    """
    Configure console logging for the backend.

    Safe to call more than once; the handler is only installed the first time.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    if any(getattr(h, "_screencoder", False) for h in root_logger.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._screencoder = True
    root_logger.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
