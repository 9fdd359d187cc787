#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# Convert a PGN archive into per-ply neural-network input planes, one line per game:
#
#   whiteElo,blackElo|mask,value;mask,value;...|mask,value;...|...
#
# Notes:
# - Games without both Elo tags or with fewer than 10 moves are skipped while reading.
# - A game with an illegal/unparsable move is dropped entirely (no partial line).
# - --discard-last drops the final game of the file (it may be truncated).
# - Output goes to <output>.tmp and is moved into place once every game is written.

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from multiprocessing import get_context
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence

from input_planes import (
    FILL_ALWAYS,
    HISTORY_DEPTH,
    apply_move,
    encode_position,
    format_game_line,
    format_planes,
    start_position,
)
from pgn_games import Game, load_games


# ----------------------------
# Constants
# ----------------------------

DEFAULT_OUTPUT = "input_planes.txt"

WRITE_PROGRESS_EVERY = 250

POOL_CHUNKSIZE = 16


# ----------------------------
# Replay and encode
# ----------------------------

@dataclass
class EncodedGame:
    # Exactly one of the two is set.
    line: Optional[str] = None
    illegal_move: Optional[str] = None


@dataclass
class WriteStats:
    processed: int = 0
    written: int = 0
    aborted: int = 0


def encode_game(game: Game, history_depth: int = HISTORY_DEPTH, fill: str = FILL_ALWAYS) -> EncodedGame:
    history = start_position()
    ply_groups: List[str] = []
    for san in game.moves:
        try:
            apply_move(history, san)
        except ValueError:
            return EncodedGame(illegal_move=san)
        ply_groups.append(format_planes(encode_position(history, history_depth, fill)))
    return EncodedGame(line=format_game_line(game.white_elo, game.black_elo, ply_groups))


def iter_encoded(games: Sequence[Game], workers: int = 1) -> Iterator[EncodedGame]:
    """Encode games in order; with workers > 1 a process pool does the work."""
    if workers <= 1:
        for game in games:
            yield encode_game(game)
        return

    # imap (not imap_unordered): output lines must follow input order.
    with get_context("spawn").Pool(processes=workers) as pool:
        yield from pool.imap(encode_game, games, chunksize=POOL_CHUNKSIZE)


def write_encoded_games(games: Sequence[Game], out_path: Path, workers: int = 1) -> Optional[WriteStats]:
    """Write one line per playable game. Returns None if the output cannot be opened."""
    tmp = out_path.with_suffix(out_path.suffix + ".tmp")
    try:
        out = open(tmp, "w", encoding="utf-8", newline="\n")
    except OSError as e:
        print(f"Failed to open file for writing. ({e})", file=sys.stderr, flush=True)
        return None

    s = WriteStats()
    total = len(games)
    try:
        try:
            for result in iter_encoded(games, workers):
                if result.line is not None:
                    out.write(result.line + "\n")
                    s.written += 1
                else:
                    print(f"\nIllegal move ({result.illegal_move}), skipping game!", file=sys.stderr, flush=True)
                    s.aborted += 1

                s.processed += 1
                if s.processed % WRITE_PROGRESS_EVERY == 0:
                    print(f"\rProcessed {s.processed}/{total} games.", end="", file=sys.stderr, flush=True)
        finally:
            out.close()
        tmp.replace(out_path)
    except OSError as e:
        # e.g. --output names a directory: the .tmp opens fine, the rename does not.
        tmp.unlink(missing_ok=True)
        print(f"\nFailed to open file for writing. ({e})", file=sys.stderr, flush=True)
        return None

    print(f"\rProcessed {s.processed} games.", file=sys.stderr, flush=True)
    print(f"Wrote output to {out_path}.", file=sys.stderr, flush=True)
    return s


# ----------------------------
# CLI
# ----------------------------

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="pgn_to_planes",
        description="Convert PGN games into neural-network input planes, one line per game.",
        add_help=False,
        exit_on_error=False,
    )
    ap.add_argument("-h", "--help", action="store_true", help="Show this help message")
    ap.add_argument("--discard-last", action="store_true", help="Optionally discard the last game in the file")
    ap.add_argument("--output", default=DEFAULT_OUTPUT, help=f"Output file (default: {DEFAULT_OUTPUT}).")
    ap.add_argument("--workers", type=int, default=1, help="Processes used to encode games (default: 1).")
    ap.add_argument("pgn", nargs="?", help="Input PGN file; '-' reads stdin, '*.zst' is decompressed.")
    return ap


def main(argv: Optional[Iterable[str]] = None) -> int:
    ap = build_parser()
    try:
        args, extra = ap.parse_known_args(None if argv is None else list(argv))
    except argparse.ArgumentError as e:
        print(f"Error: {e}", file=sys.stderr)
        ap.print_help()
        return 1
    if args.pgn is None and extra:
        # Stray arguments are taken as the input path; the last one wins.
        args.pgn = extra[-1]

    if args.help or not args.pgn:
        ap.print_help()
        return 1
    if args.workers < 1:
        print("Error: --workers must be >= 1.", file=sys.stderr)
        return 1

    print("Reading PGN file...", file=sys.stderr, flush=True)
    try:
        games, _ = load_games(args.pgn, args.discard_last)
    except OSError:
        print(f"Failed to open file: {args.pgn}", file=sys.stderr, flush=True)
        return 1

    print("Generating and writing input planes...", file=sys.stderr, flush=True)
    if write_encoded_games(games, Path(args.output), workers=args.workers) is None:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
