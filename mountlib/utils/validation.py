"""Validation helpers."""

from typing import Type


def ensure(condition: bool, message: str, error: Type[Exception] = ValueError) -> None:
    if not condition:
        raise error(message)
