"""Processing locale for the running turn."""

from __future__ import annotations

import contextvars
import re
from collections.abc import Iterator
from contextlib import contextmanager

from loguru import logger

DEFAULT_LOCALE = "en-US"

_LOCALE_PATTERN = re.compile(
    r"^[A-Za-z]{2,3}"  # language
    r"(-[A-Za-z]{4})?"  # script
    r"(-(?:[A-Za-z]{2}|[0-9]{3}))?"  # region
    r"(-(?:[A-Za-z0-9]{5,8}|[0-9][A-Za-z0-9]{3}))*$"  # variants
)

_CURRENT_LOCALE: contextvars.ContextVar[str | None] = contextvars.ContextVar("parley_current_locale", default=None)


def is_valid_locale(tag: str | None) -> bool:
    if not tag:
        return False
    return _LOCALE_PATTERN.match(tag.replace("_", "-")) is not None


def normalize_locale(tag: str) -> str:
    return tag.replace("_", "-")


def current_locale(default: str = DEFAULT_LOCALE) -> str:
    """Return the locale of the running turn, or ``default`` outside a turn."""

    return _CURRENT_LOCALE.get() or default


@contextmanager
def use_locale(tag: str | None, fallback: str | None = None) -> Iterator[str | None]:
    """Set the processing locale for the enclosed block.

    A missing or invalid ``tag`` falls back to ``fallback``; when that is
    unusable too the ambient locale is left untouched. A bad locale string
    never fails the turn.
    """

    if tag is not None and not is_valid_locale(tag):
        logger.warning("culture.invalid_locale locale={!r} fallback={}", tag, fallback or current_locale())
        tag = None
    if tag is None:
        tag = fallback if is_valid_locale(fallback) else None
    if tag is None:
        yield None
        return
    normalized = normalize_locale(tag)
    token = _CURRENT_LOCALE.set(normalized)
    try:
        yield normalized
    finally:
        _CURRENT_LOCALE.reset(token)
