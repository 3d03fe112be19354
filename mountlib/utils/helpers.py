"""General helper utilities."""

import re
import traceback
from typing import List

from mountlib.contracts.call import ErrorBody

# Word boundaries: ``someName`` -> ``some Name`` and ``HTTPServer`` -> ``HTTP Server``.
CAMEL_SPLIT_RES = (
    re.compile(r"([a-z0-9])([A-Z])"),
    re.compile(r"([A-Z])([A-Z][a-z])"),
)
NON_WORD_RE = re.compile(r"[^A-Za-z0-9]+")


def split_words(identifier: str) -> List[str]:
    s = identifier or ""
    for regex in CAMEL_SPLIT_RES:
        s = regex.sub(r"\1 \2", s)
    return [w for w in NON_WORD_RE.split(s) if w]


def param_case(identifier: str) -> str:
    """Return ``identifier`` lower-cased and hyphen separated.

    ``someMethodName``, ``some_method_name`` and ``SomeMethodName`` all map to
    ``some-method-name``.  The conversion is stable: applying it to its own
    output returns the same string.
    """

    return "-".join(w.lower() for w in split_words(identifier))


def join_path(base_path: str, segment: str) -> str:
    return f"{(base_path or '').rstrip('/')}/{segment}"


def format_error(exc: BaseException) -> ErrorBody:
    """Describe an exception as the ``{name, message, stack}`` error body."""

    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return ErrorBody(name=type(exc).__name__, message=str(exc), stack=stack)
