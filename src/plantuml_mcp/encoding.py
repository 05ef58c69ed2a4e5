"""
PlantUML Text Encoding
======================

Converts PlantUML source to the compact token used in PlantUML server URLs
(``/svg/<token>``, ``/png/<token>``, ``/txt/<token>``) and back.

The token is raw DEFLATE output written in PlantUML's own base64 variant:
three bytes become four symbols from ``0-9A-Za-z-_``.
"""

import zlib

ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz-_"


class DecodeError(ValueError):
    """Raised when a token does not hold a valid raw-deflate PlantUML text."""


def _encode_6bit(value: int) -> str:
    return ALPHABET[value & 0x3F]


def _decode_6bit(char: str) -> int:
    """Map a token symbol to its 6-bit value. Unknown symbols map to 0."""
    if '0' <= char <= '9':
        return ord(char) - 48
    if 'A' <= char <= 'Z':
        return ord(char) - 65 + 10
    if 'a' <= char <= 'z':
        return ord(char) - 97 + 36
    if char == '-':
        return 62
    if char == '_':
        return 63
    return 0


def _append_3bytes(b1: int, b2: int, b3: int) -> str:
    c1 = b1 >> 2
    c2 = ((b1 & 0x3) << 4) | (b2 >> 4)
    c3 = ((b2 & 0xF) << 2) | (b3 >> 6)
    c4 = b3 & 0x3F
    return _encode_6bit(c1) + _encode_6bit(c2) + _encode_6bit(c3) + _encode_6bit(c4)


def bytes_to_token(data: bytes) -> str:
    """Write bytes as PlantUML base64, zero-padding the final group."""
    parts = []
    for i in range(0, len(data), 3):
        b1 = data[i]
        b2 = data[i + 1] if i + 1 < len(data) else 0
        b3 = data[i + 2] if i + 2 < len(data) else 0
        parts.append(_append_3bytes(b1, b2, b3))
    return ''.join(parts)


def token_to_bytes(token: str) -> bytes:
    """Read PlantUML base64 back into bytes.

    Each group of four symbols yields three bytes. Missing symbols at the
    end of the token count as 0, as do symbols outside the alphabet.
    """
    decoded = bytearray()
    for i in range(0, len(token), 4):
        group = token[i:i + 4]
        c1, c2, c3, c4 = (_decode_6bit(group[j]) if j < len(group) else 0 for j in range(4))
        decoded.append(((c1 << 2) | (c2 >> 4)) & 0xFF)
        decoded.append((((c2 & 0xF) << 4) | (c3 >> 2)) & 0xFF)
        decoded.append((((c3 & 0x3) << 6) | c4) & 0xFF)
    return bytes(decoded)


def encode_plantuml(plantuml: str) -> str:
    """Encode PlantUML source into a URL token.

    Args:
        plantuml: Diagram source text

    Returns:
        Token whose length is a multiple of 4
    """
    # wbits=-15 gives raw deflate without the zlib header and checksum
    compressor = zlib.compressobj(9, zlib.DEFLATED, -15)
    deflated = compressor.compress(plantuml.encode('utf-8')) + compressor.flush()
    return bytes_to_token(deflated)


def decode_plantuml(encoded: str) -> str:
    """Decode a URL token back into PlantUML source.

    Args:
        encoded: Token produced by :func:`encode_plantuml`

    Returns:
        The original diagram source text

    Raises:
        DecodeError: If the token is not a complete raw-deflate stream
    """
    data = token_to_bytes(encoded)
    inflater = zlib.decompressobj(-15)
    try:
        inflated = inflater.decompress(data)
    except zlib.error as e:
        raise DecodeError(f"Invalid compressed data: {e}") from e

    # Zero padding after the final block lands in unused_data
    if not inflater.eof:
        raise DecodeError("Compressed data is truncated")

    # Invalid UTF-8 sequences become U+FFFD
    return inflated.decode('utf-8', errors='replace')
