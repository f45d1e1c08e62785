"""Configuration helper functions."""

from collections.abc import Iterable


def ensure_list(value: str | Iterable[str] | None) -> list[str]:
    """Convert a value to a list if it isn't one already.

    API keys may be configured as either a single string or a list of
    strings.

    Examples:
        >>> ensure_list("key123")
        ['key123']
        >>> ensure_list(["key1", "key2"])
        ['key1', 'key2']
        >>> ensure_list(None)
        []

    """
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


def positive_int(value: object, default: int) -> int:
    """Return ``value`` if it is a positive int, otherwise ``default``."""
    if isinstance(value, bool):
        return default
    try:
        parsed = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def positive_float(value: object, default: float) -> float:
    """Return ``value`` as a positive float, otherwise ``default``."""
    if isinstance(value, bool):
        return default
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default
