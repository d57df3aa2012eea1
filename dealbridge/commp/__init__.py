"""Piece commitment (commP) computation."""

from dealbridge.commp.calculator import (
    PieceCommitment,
    PieceCommitmentAccumulator,
    PieceCommitmentCalculator,
    padded_piece_size,
)
from dealbridge.commp.cid import commp_from_piece_cid, piece_cid_from_commp

__all__ = [
    "PieceCommitment",
    "PieceCommitmentAccumulator",
    "PieceCommitmentCalculator",
    "padded_piece_size",
    "commp_from_piece_cid",
    "piece_cid_from_commp",
]
