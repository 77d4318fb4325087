"""Base62 big-integer codec.

Alphabet ordinals: ``A``-``Z`` are 0-25, ``a``-``z`` are 26-51 and ``0``-``9``
are 52-61. Digit characters are therefore NOT ordinals 0-9 (``"0"`` is 52).

Encoding loses the width of the original decimal or binary string; callers
carrying fixed-width payloads re-pad after decoding with
:func:`decode_to_digits` or :func:`decode_to_bits`.
"""

from opentag.domain.ports import MalformedRecordError

BASE62_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
BASE = len(BASE62_ALPHABET)

_ORDINALS = {char: ordinal for ordinal, char in enumerate(BASE62_ALPHABET)}


def encode(value: int) -> str:
    """Encode a non-negative integer as base62.

    ``encode(0)`` is ``"A"``.

    Raises:
        ValueError: If ``value`` is negative
    """
    if value < 0:
        raise ValueError(f"Cannot base62-encode a negative value: {value}")
    if value == 0:
        return BASE62_ALPHABET[0]

    chars = []
    while value:
        value, remainder = divmod(value, BASE)
        chars.append(BASE62_ALPHABET[remainder])
    return "".join(reversed(chars))


def decode(encoded: str, component: str = "base62") -> int:
    """Decode a base62 string with Horner's method.

    Parameters:
        encoded: Base62 text
        component: Record component name used in error reports

    Raises:
        MalformedRecordError: If the text is empty or has characters outside the alphabet
    """
    if not encoded:
        raise MalformedRecordError(f"Empty {component} component", component=component)

    value = 0
    for position, char in enumerate(encoded):
        ordinal = _ORDINALS.get(char)
        if ordinal is None:
            raise MalformedRecordError(
                f"Invalid base62 character in {component} component at position {position}",
                component=component,
                details={"position": position},
            )
        value = value * BASE + ordinal
    return value


def decode_to_digits(encoded: str, width: int, component: str = "base62") -> str:
    """Decode to a decimal string left-padded with zeros to ``width``.

    Raises:
        MalformedRecordError: If the decoded value needs more than ``width`` digits
    """
    digits = str(decode(encoded, component))
    if len(digits) > width:
        raise MalformedRecordError(
            f"Decoded {component} component has {len(digits)} digits, expected at most {width}",
            component=component,
        )
    return digits.zfill(width)


def decode_to_bits(encoded: str, width: int, component: str = "base62") -> str:
    """Decode to a binary string left-padded with ``'0'`` to ``width``.

    Raises:
        MalformedRecordError: If the decoded value needs more than ``width`` bits
    """
    bits = format(decode(encoded, component), "b")
    if len(bits) > width:
        raise MalformedRecordError(
            f"Decoded {component} component has {len(bits)} bits, expected at most {width}",
            component=component,
        )
    return bits.zfill(width)
