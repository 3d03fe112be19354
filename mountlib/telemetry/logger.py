"""Logger wiring shared by the mount services."""

import logging


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
