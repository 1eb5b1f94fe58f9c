import logging
import sys

from pythonjsonlogger.json import JsonFormatter

FIELDS = "%(asctime)s %(levelname)s %(name)s %(message)s"


def setup_logging(level: str = "INFO", json_format: bool = True) -> None:
    """Install a single stdout handler on the root logger.

    Calling it twice replaces the handler instead of stacking a second one.
    """
    root = logging.getLogger()
    for h in list(root.handlers):
        if getattr(h, "_boxoffice", False):
            root.removeHandler(h)

    h = logging.StreamHandler(sys.stdout)
    if json_format:
        h.setFormatter(JsonFormatter(FIELDS))
    else:
        h.setFormatter(logging.Formatter(FIELDS.replace(" %", " - %")))
    h._boxoffice = True
    root.addHandler(h)
    root.setLevel(level)

    # httpx logs every request at INFO, which leaks the bot token in URLs
    logging.getLogger("httpx").setLevel(logging.WARNING)
