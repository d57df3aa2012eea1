"""Piece CID encoding."""

from dealbridge.content.cid import (
    cid_bytes,
    decode_varint,
    encode_base32,
    encode_varint,
)

FIL_COMMITMENT_UNSEALED = 0xF101
SHA2_256_TRUNC254_PADDED = 0x1012

_PIECE_CID_PREFIX = (
    encode_varint(1)
    + encode_varint(FIL_COMMITMENT_UNSEALED)
    + encode_varint(SHA2_256_TRUNC254_PADDED)
    + encode_varint(32)
)


def piece_cid_from_commp(commp: bytes) -> str:
    """Encode a raw 32 byte commP digest as a CIDv1 string."""
    if len(commp) != 32:
        raise ValueError(f"commP must be 32 bytes, got {len(commp)}")
    return encode_base32(_PIECE_CID_PREFIX + commp)


def commp_from_piece_cid(piece_cid: str) -> bytes:
    """Extract the raw digest from a piece CID.

    Raises:
        InvalidCID: If the string is not a CID
        ValueError: If the CID is not an unsealed piece commitment
    """
    raw = cid_bytes(piece_cid)
    _version, offset = decode_varint(raw)
    codec, offset = decode_varint(raw, offset)
    mh_code, offset = decode_varint(raw, offset)
    length, offset = decode_varint(raw, offset)
    if codec != FIL_COMMITMENT_UNSEALED or mh_code != SHA2_256_TRUNC254_PADDED:
        raise ValueError(f"{piece_cid} is not a piece commitment CID")
    return raw[offset : offset + length]
