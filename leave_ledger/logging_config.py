"""Process-wide logging setup."""

import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s — %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "info") -> None:
    """Install the root handler once; later calls only adjust the level."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO

    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=numeric, format=LOG_FORMAT, datefmt=DATE_FORMAT)
    root.setLevel(numeric)
    logging.getLogger("leave_ledger").setLevel(numeric)
