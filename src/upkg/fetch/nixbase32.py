"""Nix's base-32 encoding.

Not RFC 4648: the alphabet omits ``e o t u`` and digits are emitted from the
most significant 5-bit group of the little-endian bit string first.
"""

from __future__ import annotations

ALPHABET = "0123456789abcdfghijklmnpqrsvwxyz"
_INDEX = {c: i for i, c in enumerate(ALPHABET)}


def encoded_length(size: int) -> int:
    """Characters needed for ``size`` bytes (52 for a sha256 digest)."""
    return (size * 8 - 1) // 5 + 1 if size else 0


def encode(data: bytes) -> str:
    out = []
    size = len(data)
    for n in range(encoded_length(size) - 1, -1, -1):
        bit = n * 5
        i, j = divmod(bit, 8)
        c = data[i] >> j
        if i + 1 < size:
            c |= data[i + 1] << (8 - j)
        out.append(ALPHABET[c & 0x1F])
    return "".join(out)


def decode(text: str) -> bytes:
    """Decode nix base-32.

    Raises:
        ValueError: on a character outside the alphabet, or when the leading
            digit carries bits beyond the decoded length.
    """
    size = len(text) * 5 // 8
    out = bytearray(size)
    for n in range(len(text)):
        ch = text[len(text) - n - 1]
        digit = _INDEX.get(ch)
        if digit is None:
            raise ValueError(f"invalid nix base-32 character {ch!r}")
        bit = n * 5
        i, j = divmod(bit, 8)
        if i < size:
            out[i] |= (digit << j) & 0xFF
        elif digit:
            raise ValueError("invalid nix base-32 string: excess bits")
        carry = digit >> (8 - j)
        if i + 1 < size:
            out[i + 1] |= carry
        elif carry:
            raise ValueError("invalid nix base-32 string: excess bits")
    return bytes(out)
