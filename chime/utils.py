"""
Value helpers shared by the configuration and service layers

- parse_bool: on/off style preference values ("on", "yes", "1", "true")
- env_bool / env_int / env_float: typed reads from an environment mapping
  with a fallback and optional clamping
- await_with_timeout: bounded awaits for the Wyoming client
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Mapping
from typing import Any, TypeVar

_TRUE_WORDS = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS = frozenset({"0", "false", "no", "off"})

_Number = TypeVar("_Number", int, float)


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Interpret a preference switch; anything unrecognized keeps ``default``."""
    if value is None:
        return default
    word = value.strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    return default


def _clamp(value: _Number, minimum: _Number | None, maximum: _Number | None) -> _Number:
    if minimum is not None and value < minimum:
        return minimum
    if maximum is not None and value > maximum:
        return maximum
    return value


def env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    return parse_bool(env.get(key), default)


def env_int(
    env: Mapping[str, str],
    key: str,
    default: int,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    raw = (env.get(key) or "").strip()
    try:
        value = int(raw) if raw else default
    except ValueError:
        value = default
    return _clamp(value, minimum, maximum)


def env_float(
    env: Mapping[str, str],
    key: str,
    default: float,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float:
    raw = (env.get(key) or "").strip()
    try:
        value = float(raw) if raw else default
    except ValueError:
        value = default
    if value != value:  # NaN
        value = default
    return _clamp(value, minimum, maximum)


async def await_with_timeout(awaitable: Awaitable[Any], timeout: float | None) -> Any:
    """Await ``awaitable``, giving up after ``timeout`` seconds when one is set."""
    if timeout is None:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout=timeout)
