"""Content identifier (CID) parsing and encoding helpers."""

import base64
import re

from base58 import b58decode

from dealbridge.core.errors import InvalidCID

# multihash sha2-256, 32 byte digest
CIDV0_PREFIX = b"\x12\x20"
CIDV0_LENGTH = 46

_BASE58_ALPHABET = re.compile(r"^[1-9A-HJ-NP-Za-km-z]+$")
_BASE32_ALPHABET = re.compile(r"^[a-z2-7]+$")

# Generous upper bound; real CIDs are well under 200 characters
MAX_CID_LENGTH = 512


def encode_varint(value: int) -> bytes:
    """Encode a non-negative integer as an unsigned LEB128 varint."""
    if value < 0:
        raise ValueError("varint must be non-negative")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(data: bytes, offset: int = 0) -> tuple[int, int]:
    """Decode an unsigned varint.

    Returns:
        The decoded value and the offset just past it

    Raises:
        ValueError: If the varint is truncated or longer than 9 bytes
    """
    value = 0
    shift = 0
    for index in range(offset, min(len(data), offset + 9)):
        byte = data[index]
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, index + 1
        shift += 7
    raise ValueError("truncated or oversized varint")


def encode_base32(data: bytes) -> str:
    """Multibase base32 (lower case, unpadded, ``b`` prefix)."""
    return "b" + base64.b32encode(data).decode("ascii").lower().rstrip("=")


def _decode_base32(text: str) -> bytes:
    if not _BASE32_ALPHABET.match(text):
        raise ValueError("invalid base32 character")
    padding = "=" * (-len(text) % 8)
    return base64.b32decode(text.upper() + padding)


def _decode_base58(text: str) -> bytes:
    if not _BASE58_ALPHABET.match(text):
        raise ValueError("invalid base58 character")
    return b58decode(text)


def _check_multihash(data: bytes, offset: int) -> None:
    _code, offset = decode_varint(data, offset)
    length, offset = decode_varint(data, offset)
    if length == 0 or len(data) - offset != length:
        raise ValueError("multihash digest length mismatch")


def cid_bytes(cid: str) -> bytes:
    """Decode a CID string into its binary form.

    Accepts CIDv0 (base58btc ``Qm...``) and CIDv1 in base32 (``b``/``B``)
    or base58btc (``z``) multibase.

    Raises:
        InvalidCID: If the string is not a well-formed CID
    """
    if not cid or len(cid) > MAX_CID_LENGTH or cid != cid.strip():
        raise InvalidCID(f"Malformed CID: {cid!r}")

    try:
        if len(cid) == CIDV0_LENGTH and cid.startswith("Qm"):
            raw = _decode_base58(cid)
            if len(raw) != 34 or not raw.startswith(CIDV0_PREFIX):
                raise ValueError("not a sha2-256 multihash")
            return raw

        prefix, body = cid[0], cid[1:]
        if prefix == "b":
            raw = _decode_base32(body)
        elif prefix == "B":
            raw = _decode_base32(body.lower())
        elif prefix == "z":
            raw = _decode_base58(body)
        else:
            raise ValueError(f"unsupported multibase prefix {prefix!r}")

        version, offset = decode_varint(raw)
        if version != 1:
            raise ValueError(f"unsupported CID version {version}")
        _codec, offset = decode_varint(raw, offset)
        _check_multihash(raw, offset)
        return raw
    except ValueError as e:
        raise InvalidCID(f"Malformed CID {cid!r}: {e}") from e


def validate_cid(cid: str) -> str:
    """Validate a CID and return it unchanged.

    Raises:
        InvalidCID: If the string is not a well-formed CID
    """
    cid_bytes(cid)
    return cid
