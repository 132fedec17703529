"""Base62 code codec for numeric short-link ids.

Short codes live in two disjoint spaces:

- ``_<base62>``: the sentinel prefix marks a base62-encoded surrogate id.
- anything else: a user-chosen alias looked up directly.

Example::

    >>> encode(42)
    'Q'
    >>> decode("Q")
    42
    >>> split_code("_Q")
    (42, None)
    >>> split_code("docs")
    (None, 'docs')
"""

from shortener.errors import InvalidCodeError

__all__ = ["ALPHABET", "SENTINEL", "encode", "decode", "encoded_code", "split_code"]

ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
SENTINEL = "_"

_BASE = len(ALPHABET)
_INDEX = {char: position for position, char in enumerate(ALPHABET)}


def encode(value: int) -> str:
    if not isinstance(value, int) or value < 0:
        raise ValueError(f"value must be non-negative int, got {value!r}")
    if value == 0:
        return ALPHABET[0]

    encoded_chars: list[str] = []
    current = value
    while current > 0:
        current, remainder = divmod(current, _BASE)
        encoded_chars.append(ALPHABET[remainder])
    encoded_chars.reverse()
    return "".join(encoded_chars)


def decode(encoded: str) -> int:
    if not encoded:
        raise InvalidCodeError("Encoded string cannot be empty")

    decoded = 0
    for char in encoded:
        position = _INDEX.get(char)
        if position is None:
            raise InvalidCodeError(f"Invalid character in base62 string: {char!r}")
        decoded = decoded * _BASE + position
    return decoded


def encoded_code(url_id: int) -> str:
    """Return the public sentinel-prefixed code for a surrogate id."""
    return SENTINEL + encode(url_id)


def split_code(short_code: str) -> tuple[int | None, str | None]:
    """Classify a short code as ``(url_id, None)`` or ``(None, alias)``.

    Raises:
        InvalidCodeError: empty code, or a sentinel code whose body is not base62.
    """
    if not short_code:
        raise InvalidCodeError("Short code cannot be empty")
    if short_code.startswith(SENTINEL):
        return decode(short_code[len(SENTINEL):]), None
    return None, short_code
