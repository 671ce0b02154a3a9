import logging
import sys

from .config import LOG_LEVEL

FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def init_logging(level: str = LOG_LEVEL):
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(FORMAT))
    root.addHandler(handler)
    root.setLevel(getattr(logging, level, logging.INFO))

    # one line per request is already logged by the lifecycle
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
