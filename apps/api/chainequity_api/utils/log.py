"""Logging configuration shared by the API, CLI and worker."""

import logging
import sys

JSON_FORMAT = '{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s", "module": "%(name)s"}'
TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str = "INFO", fmt: str = "json", stream=None):
    """Configure root logging (stdout unless another stream is given)."""
    logging.basicConfig(
        level=level,
        format=JSON_FORMAT if fmt == "json" else TEXT_FORMAT,
        handlers=[logging.StreamHandler(stream or sys.stdout)],
    )
