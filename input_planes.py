# input_planes.py
# -----------------------------------------------------------------------------
# Position history on top of python-chess, and a Leela-style "classical 112
# plane" input encoder.
#
# Plane layout (112 planes, each a 64-bit square mask plus a float value):
# - 8 history slots, most recent first, 13 planes each:
#     our P N B R Q K, their P N B R Q K, repetition (all squares if the
#     position occurred before).
# - 8 auxiliary planes: our O-O-O, our O-O, their O-O-O, their O-O,
#   black to move, rule-50 (value = halfmove clock), zeros, all ones.
#
# "Our" is the side to move in the LAST position; when Black is to move every
# board is mirrored vertically so that our pieces start on ranks 1-2.
# -----------------------------------------------------------------------------

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

import chess
import chess.polyglot


# ----------------------------
# Constants
# ----------------------------

HISTORY_DEPTH = 8
PLANES_PER_POSITION = 13
AUX_PLANES = 8
NUM_PLANES = HISTORY_DEPTH * PLANES_PER_POSITION + AUX_PLANES  # 112

PIECE_ORDER = [chess.PAWN, chess.KNIGHT, chess.BISHOP, chess.ROOK, chess.QUEEN, chess.KING]

# How to fill history slots older than the first position of the game.
FILL_NO = "no"
FILL_FEN_ONLY = "fen_only"
FILL_ALWAYS = "always"


@dataclass(frozen=True)
class InputPlane:
    mask: int = 0
    value: float = 1.0


# ----------------------------
# Rules engine (python-chess)
# ----------------------------

class PositionHistory:
    """Boards reached so far in one game, with per-position repetition counts."""

    def __init__(self, board: Optional[chess.Board] = None) -> None:
        first = chess.Board() if board is None else board.copy(stack=False)
        self.boards: List[chess.Board] = [first]
        self.repetitions: List[int] = [0]
        self._keys: List[int] = [chess.polyglot.zobrist_hash(first)]

    def __len__(self) -> int:
        return len(self.boards)

    def last(self) -> chess.Board:
        return self.boards[-1]

    def append(self, move: chess.Move) -> None:
        board = self.boards[-1].copy(stack=False)
        board.push(move)
        # Polyglot keys only include a capturable en-passant square, so the
        # position after an uncapturable double push can count as a repetition.
        key = chess.polyglot.zobrist_hash(board)
        self.repetitions.append(self._keys.count(key))
        self._keys.append(key)
        self.boards.append(board)


def start_position() -> PositionHistory:
    return PositionHistory()


def apply_move(history: PositionHistory, san: str) -> PositionHistory:
    """Parse `san` against the current board and play it.

    Raises a ValueError subclass from python-chess (IllegalMoveError,
    InvalidMoveError, AmbiguousMoveError) when the token cannot be played.
    """
    move = history.last().parse_san(san)
    if not move:
        # parse_san accepts "--" as a null move.
        raise chess.IllegalMoveError(f"null move not allowed: {san!r}")
    history.append(move)
    return history


# ----------------------------
# Encoder
# ----------------------------

def _oriented(mask: int, flip: bool) -> int:
    return chess.flip_vertical(mask) if flip else mask


def _flag_plane(flag: bool) -> InputPlane:
    return InputPlane(chess.BB_ALL if flag else 0)


def _empty_slot() -> List[InputPlane]:
    return [InputPlane() for _ in range(PLANES_PER_POSITION)]


def encode_position(
    history: PositionHistory,
    history_depth: int = HISTORY_DEPTH,
    fill: str = FILL_ALWAYS,
) -> List[InputPlane]:
    if fill not in (FILL_NO, FILL_FEN_ONLY, FILL_ALWAYS):
        raise ValueError(f"Unknown fill policy: {fill}")

    current = history.last()
    us = current.turn
    them = not us
    flip = us == chess.BLACK

    fill_missing = fill == FILL_ALWAYS or (
        fill == FILL_FEN_ONLY and history.boards[0].board_fen() != chess.STARTING_BOARD_FEN
    )

    planes: List[InputPlane] = []
    for slot in range(HISTORY_DEPTH):
        idx = len(history) - 1 - slot
        if slot >= history_depth or (idx < 0 and not fill_missing):
            planes.extend(_empty_slot())
            continue

        idx = max(idx, 0)
        board = history.boards[idx]
        for color in (us, them):
            for piece_type in PIECE_ORDER:
                planes.append(InputPlane(_oriented(board.pieces_mask(piece_type, color), flip)))
        planes.append(_flag_plane(history.repetitions[idx] >= 1))

    planes.append(_flag_plane(current.has_queenside_castling_rights(us)))
    planes.append(_flag_plane(current.has_kingside_castling_rights(us)))
    planes.append(_flag_plane(current.has_queenside_castling_rights(them)))
    planes.append(_flag_plane(current.has_kingside_castling_rights(them)))
    planes.append(_flag_plane(us == chess.BLACK))
    planes.append(InputPlane(chess.BB_ALL, float(current.halfmove_clock)))
    planes.append(InputPlane(0))
    planes.append(InputPlane(chess.BB_ALL))
    return planes


# ----------------------------
# Serialization
# ----------------------------

def format_planes(planes: Iterable[InputPlane]) -> str:
    return ";".join(f"{p.mask},{p.value:g}" for p in planes)


def format_game_line(white_elo: str, black_elo: str, ply_groups: Iterable[str]) -> str:
    """'white,black|plies...' without the trailing newline."""
    return f"{white_elo},{black_elo}|" + "|".join(ply_groups)
