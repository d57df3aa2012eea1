"""Streaming piece commitment (commP) computation.

The payload is zero-padded to a whole number of 127 byte quads. Each quad is
FR32-expanded into four 32 byte nodes: its 1016 bits, read little-endian, are
split into four 254 bit groups and every group gets two zero bits on top.
These nodes are the leaves of a binary Merkle tree whose parents are
``SHA-256(left || right)`` with the two most significant bits cleared. The
tree is completed with zero subtrees up to the padded piece size, the next
power of two that can hold the expanded payload.
"""

import asyncio
import hashlib
from collections.abc import AsyncIterable, Iterable
from dataclasses import dataclass

from dealbridge.commp.cid import piece_cid_from_commp
from dealbridge.core.errors import EmptyPayload

NODE_SIZE = 32
QUAD_SIZE = 127
EXPANDED_QUAD_SIZE = 128
MIN_PADDED_PIECE_SIZE = 128

_FR32_GROUP_BITS = 254
_FR32_GROUP_MASK = (1 << _FR32_GROUP_BITS) - 1

# Enough levels for the largest sector size (64 GiB = 2^31 nodes)
MAX_TREE_LEVELS = 40


def _trunc_sha256(left: bytes, right: bytes) -> bytes:
    digest = bytearray(hashlib.sha256(left + right).digest())
    digest[31] &= 0x3F
    return bytes(digest)


def _zero_commitments(levels: int) -> list[bytes]:
    comms = [bytes(NODE_SIZE)]
    for _ in range(levels):
        comms.append(_trunc_sha256(comms[-1], comms[-1]))
    return comms


# ZERO_COMMITMENTS[i] is the root of an all-zero subtree with 2**i leaves
ZERO_COMMITMENTS = _zero_commitments(MAX_TREE_LEVELS)


def fr32_expand(quad: bytes) -> list[bytes]:
    """Expand one 127 byte quad into four 32 byte tree leaves."""
    if len(quad) != QUAD_SIZE:
        raise ValueError(f"quad must be {QUAD_SIZE} bytes, got {len(quad)}")
    value = int.from_bytes(quad, "little")
    return [
        ((value >> (_FR32_GROUP_BITS * i)) & _FR32_GROUP_MASK).to_bytes(
            NODE_SIZE, "little"
        )
        for i in range(4)
    ]


def padded_piece_size(payload_size: int) -> int:
    """Smallest power-of-two piece size able to hold the FR32-expanded payload."""
    if payload_size <= 0:
        raise ValueError("payload size must be positive")
    quads = -(-payload_size // QUAD_SIZE)
    expanded = quads * EXPANDED_QUAD_SIZE
    size = MIN_PADDED_PIECE_SIZE
    while size < expanded:
        size <<= 1
    return size


@dataclass(frozen=True)
class PieceCommitment:
    """Piece commitment of a payload."""

    commp: bytes
    padded_piece_size: int
    payload_size: int

    @property
    def piece_cid(self) -> str:
        """The commitment encoded as a ``baga...`` piece CID."""
        return piece_cid_from_commp(self.commp)

    @property
    def unpadded_piece_size(self) -> int:
        """Piece size before FR32 expansion."""
        return self.padded_piece_size // EXPANDED_QUAD_SIZE * QUAD_SIZE


class PieceCommitmentAccumulator:
    """Incremental commP over arbitrarily chunked input.

    Keeps one partial quad and at most one pending node per tree level, so
    memory stays constant regardless of payload size.
    """

    def __init__(self) -> None:
        self._partial = bytearray()
        # _pending[level] holds a left node still waiting for its sibling
        self._pending: list[bytes | None] = []
        self._payload_size = 0
        self._finalized: PieceCommitment | None = None

    @property
    def payload_size(self) -> int:
        """Number of bytes consumed so far."""
        return self._payload_size

    def update(self, chunk: bytes) -> None:
        """Feed the next chunk of the payload."""
        if self._finalized is not None:
            raise RuntimeError("accumulator already finalized")
        if not chunk:
            return
        self._payload_size += len(chunk)
        view = memoryview(chunk)

        offset = 0
        if self._partial:
            need = QUAD_SIZE - len(self._partial)
            self._partial += view[:need]
            offset = need
            if len(self._partial) < QUAD_SIZE:
                return
            self._add_quad(bytes(self._partial))
            self._partial.clear()

        whole = offset + (len(view) - offset) // QUAD_SIZE * QUAD_SIZE
        for start in range(offset, whole, QUAD_SIZE):
            self._add_quad(bytes(view[start : start + QUAD_SIZE]))
        self._partial += view[whole:]

    def _add_quad(self, quad: bytes) -> None:
        for leaf in fr32_expand(quad):
            self._push(leaf, 0)

    def _push(self, node: bytes, level: int) -> None:
        while True:
            if level == len(self._pending):
                self._pending.append(None)
            left = self._pending[level]
            if left is None:
                self._pending[level] = node
                return
            self._pending[level] = None
            node = _trunc_sha256(left, node)
            level += 1

    def digest(self) -> PieceCommitment:
        """Finish the tree and return the commitment.

        Raises:
            EmptyPayload: If no bytes were consumed
        """
        if self._finalized is not None:
            return self._finalized
        if self._payload_size == 0:
            raise EmptyPayload("Cannot compute a piece commitment of zero bytes")

        if self._partial:
            self._partial += bytes(QUAD_SIZE - len(self._partial))
            self._add_quad(bytes(self._partial))
            self._partial.clear()

        size = padded_piece_size(self._payload_size)
        root_level = (size // NODE_SIZE).bit_length() - 1

        # Fold the pending nodes upwards, pairing gaps with zero subtrees
        carry: bytes | None = None
        for level in range(root_level):
            left = self._pending[level] if level < len(self._pending) else None
            if left is not None and carry is not None:
                carry = _trunc_sha256(left, carry)
            elif left is not None:
                carry = _trunc_sha256(left, ZERO_COMMITMENTS[level])
            elif carry is not None:
                carry = _trunc_sha256(carry, ZERO_COMMITMENTS[level])

        if carry is None:
            # The payload filled the tree exactly
            carry = self._pending[root_level]
        if carry is None:
            raise RuntimeError("piece tree has no root")

        self._finalized = PieceCommitment(
            commp=carry, padded_piece_size=size, payload_size=self._payload_size
        )
        return self._finalized


class PieceCommitmentCalculator:
    """Computes piece commitments over byte streams."""

    def compute_bytes(self, chunks: Iterable[bytes]) -> PieceCommitment:
        """Fold a synchronous iterable of chunks into a commitment."""
        accumulator = PieceCommitmentAccumulator()
        for chunk in chunks:
            accumulator.update(chunk)
        return accumulator.digest()

    async def compute(self, stream: AsyncIterable[bytes]) -> PieceCommitment:
        """Fold an async byte stream into a commitment.

        Hashing runs in a worker thread so the event loop keeps serving other
        requests. Errors raised by the stream (e.g. ``StreamReadError``)
        propagate.

        Raises:
            EmptyPayload: If the stream yields no bytes
        """
        accumulator = PieceCommitmentAccumulator()
        async for chunk in stream:
            if chunk:
                await asyncio.to_thread(accumulator.update, chunk)
        return await asyncio.to_thread(accumulator.digest)
