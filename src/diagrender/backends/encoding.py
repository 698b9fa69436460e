"""URL-safe source encodings used by the HTTP backends."""

from __future__ import annotations

import base64
import zlib

PLANTUML_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz-_"


def encode_kroki(source: str) -> str:
    """Encode diagram source for Kroki GET URLs.

    Uses zlib deflate (level 9) followed by base64url, as Kroki expects.

    Args:
        source: The diagram source code.

    Returns:
        Encoded string suitable for a URL path segment.
    """
    compressed = zlib.compress(source.encode("utf-8"), level=9)
    return base64.urlsafe_b64encode(compressed).decode("ascii")


def decode_kroki(encoded: str) -> str:
    return zlib.decompress(base64.urlsafe_b64decode(encoded)).decode("utf-8")


def encode_plantuml(source: str) -> str:
    """Encode source with PlantUML's raw-deflate and custom 6-bit alphabet.

    The final group is zero-padded to three bytes so every group yields four
    characters, matching the reference encoder used by PlantUML servers.
    """
    deflated = zlib.compress(source.encode("utf-8"), level=9)[2:-4]
    chars: list[str] = []
    for i in range(0, len(deflated), 3):
        b1, b2, b3 = (deflated[i : i + 3] + b"\x00\x00")[:3]
        chars.append(PLANTUML_ALPHABET[b1 >> 2])
        chars.append(PLANTUML_ALPHABET[((b1 & 0x3) << 4) | (b2 >> 4)])
        chars.append(PLANTUML_ALPHABET[((b2 & 0xF) << 2) | (b3 >> 6)])
        chars.append(PLANTUML_ALPHABET[b3 & 0x3F])
    return "".join(chars)


def decode_plantuml(encoded: str) -> str:
    """Reverse of encode_plantuml (padding bytes are ignored by inflate)."""
    data = bytearray()
    for i in range(0, len(encoded), 4):
        c1, c2, c3, c4 = (PLANTUML_ALPHABET.index(c) for c in encoded[i : i + 4])
        data.append((c1 << 2) | (c2 >> 4))
        data.append(((c2 & 0xF) << 4) | (c3 >> 2))
        data.append(((c3 & 0x3) << 6) | c4)
    inflater = zlib.decompressobj(-15)
    return inflater.decompress(bytes(data)).decode("utf-8")
