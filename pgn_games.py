# pgn_games.py
# -----------------------------------------------------------------------------
# Line-oriented PGN scanner: strips {comments}, splits the stream into
# blank-line separated sections, extracts the two Elo tags and the SAN move
# tokens, and yields the games that are usable for training.
#
# Conventions:
# - A section boundary is a blank line (after trimming the RAW line) that
#   follows a non-blank line. A line holding only "{...}" is not blank.
# - A header block + a movetext block make one game (two sections).
# - A game is kept iff both Elo tags are non-empty and it has >= MIN_MOVES moves.
# -----------------------------------------------------------------------------

from __future__ import annotations

import io
import sys
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, TextIO, Tuple

import zstandard as zstd


# ----------------------------
# Constants
# ----------------------------

MIN_MOVES = 10

LOAD_PROGRESS_EVERY = 500

WHITE_ELO_TAG = "[WhiteElo"
BLACK_ELO_TAG = "[BlackElo"

RESULT_TOKENS = ("1-0", "0-1", "1/2-1/2")


@dataclass
class Game:
    white_elo: str = ""
    black_elo: str = ""
    moves: List[str] = field(default_factory=list)


@dataclass
class LoadStats:
    loaded: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.loaded + self.skipped


@dataclass
class ScanState:
    in_comment: bool = False
    in_moves_section: bool = False
    was_empty_line: bool = False
    saw_result: bool = False
    section_count: int = 0
    game: Game = field(default_factory=Game)


def is_valid_game(game: Game) -> bool:
    return bool(game.white_elo) and bool(game.black_elo) and len(game.moves) >= MIN_MOVES


# ----------------------------
# Line-level parsing
# ----------------------------

def strip_comments(line: str, in_comment: bool) -> Tuple[str, bool]:
    """Remove {...} spans from a line.

    `in_comment` carries an unterminated comment over to the next line.
    Braces do not nest: a "{" inside a comment is dropped with the comment,
    and a "}" outside a comment is kept as-is.
    """
    out: List[str] = []
    for ch in line:
        if not in_comment and ch == "{":
            in_comment = True
            continue
        if in_comment and ch == "}":
            in_comment = False
            continue
        if not in_comment:
            out.append(ch)
    return "".join(out), in_comment


def parse_header_line(line: str) -> Tuple[str, str]:
    """Split '[Tag "Value"]' into ('[Tag', 'Value').

    The tag keeps its leading bracket. The value is whatever sits between the
    first two double quotes (the rest of the line after a lone quote, "" if
    there is none).
    """
    parts = line.split(None, 1)
    tag = parts[0] if parts else ""
    quoted = line.split('"')
    value = quoted[1] if len(quoted) > 1 else ""
    return tag, value


def tokenize_moves(line: str) -> Tuple[List[str], bool]:
    """Return (moves, saw_result) for one movetext line.

    Move numbers fused to a move ("12.Nf3", "12...Nf3") are stripped. Any token
    containing a dot is treated that way, so "12." alone yields nothing.
    """
    moves: List[str] = []
    for token in line.split():
        if token in RESULT_TOKENS:
            return moves, True

        dot = token.find(".")
        if dot == -1:
            moves.append(token)
            continue

        start = dot + 3 if "..." in token else dot + 1
        move = token[start:]
        if move:
            moves.append(move)
    return moves, False


# ----------------------------
# Section scanner / game assembler
# ----------------------------

def feed_line(state: ScanState, line: str, stats: LoadStats) -> Optional[Game]:
    """Advance the scanner by one raw line.

    Returns the finished game when this line closes a movetext block and the
    game passes `is_valid_game`; rejected games only bump `stats.skipped`.
    """
    text, state.in_comment = strip_comments(line, state.in_comment)
    text = text.strip()

    if not line.strip():
        finished: Optional[Game] = None
        if not state.was_empty_line:
            state.section_count += 1
            if state.in_moves_section and state.game.moves:
                candidate = state.game
                state.game = Game()
                if is_valid_game(candidate):
                    stats.loaded += 1
                    finished = candidate
                else:
                    stats.skipped += 1
            state.in_moves_section = False
            state.saw_result = False
        state.was_empty_line = True
        return finished

    state.was_empty_line = False

    if text.startswith("["):
        tag, value = parse_header_line(text)
        if tag == WHITE_ELO_TAG:
            state.game.white_elo = value
        elif tag == BLACK_ELO_TAG:
            state.game.black_elo = value
        return None

    state.in_moves_section = True
    if state.saw_result:
        # Everything after the result token belongs to no game.
        return None
    moves, state.saw_result = tokenize_moves(text)
    state.game.moves.extend(moves)
    return None


def read_games(
    lines: Iterable[str],
    max_sections: Optional[int] = None,
    accept_trailing: bool = True,
    stats: Optional[LoadStats] = None,
) -> Iterator[Game]:
    """Yield accepted games in file order.

    Scanning stops once `max_sections` boundaries have been seen. The game
    left open at end of input is kept only if `accept_trailing` is set and it
    is valid on its own.
    """
    if stats is None:
        stats = LoadStats()
    state = ScanState()

    for line in lines:
        if max_sections is not None and state.section_count >= max_sections:
            break
        game = feed_line(state, line, stats)
        if game is None:
            continue
        if stats.loaded % LOAD_PROGRESS_EVERY == 0:
            print(f"\rLoaded {stats.loaded} games.", end="", file=sys.stderr, flush=True)
        yield game

    if accept_trailing and is_valid_game(state.game):
        stats.loaded += 1
        yield state.game


# ----------------------------
# Discard-last pre-scan
# ----------------------------

def count_sections(lines: Iterable[str]) -> int:
    count = 0
    was_empty = False
    for line in lines:
        if not line.strip():
            if not was_empty:
                count += 1
            was_empty = True
        else:
            was_empty = False
    return count


def section_cutoff(total_sections: int) -> int:
    # Largest even section count that leaves out the last (maybe truncated) game.
    return max(total_sections - 1, 0) // 2 * 2


# ----------------------------
# Input opening
# ----------------------------

def open_pgn_text(path: str) -> TextIO:
    """Open a PGN file for reading; '*.zst' files are decompressed on the fly."""
    if path.endswith(".zst"):
        fh = open(path, "rb")
        try:
            reader = zstd.ZstdDecompressor().stream_reader(fh)
        except Exception:
            fh.close()
            raise
        return io.TextIOWrapper(reader, encoding="utf-8", errors="replace")
    return open(path, "r", encoding="utf-8", errors="replace")


def load_games(path: str, discard_last: bool) -> Tuple[List[Game], LoadStats]:
    """Read every accepted game from `path` ('-' for stdin).

    With `discard_last`, a first pass counts sections so the second pass can
    stop before the final game. stdin cannot be rewound, so it is buffered.
    Raises OSError when the input cannot be opened.
    """
    stats = LoadStats()
    max_sections: Optional[int] = None
    buffered: Optional[List[str]] = None

    if path == "-" and discard_last:
        buffered = sys.stdin.readlines()

    if discard_last:
        # The final game is never emitted; it counts as skipped.
        stats.skipped += 1
        if buffered is not None:
            total_sections = count_sections(buffered)
        else:
            with open_pgn_text(path) as stream:
                total_sections = count_sections(stream)
        max_sections = section_cutoff(total_sections)

    accept_trailing = not discard_last
    if buffered is not None:
        games = list(read_games(buffered, max_sections, accept_trailing, stats))
    elif path == "-":
        games = list(read_games(sys.stdin, max_sections, accept_trailing, stats))
    else:
        with open_pgn_text(path) as stream:
            games = list(read_games(stream, max_sections, accept_trailing, stats))

    print(f"\rCompleted - Loaded {stats.loaded}/{stats.total} games.", file=sys.stderr, flush=True)
    return games, stats
