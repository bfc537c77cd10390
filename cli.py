"""Terminal runner for the shell game experiment."""

from __future__ import annotations

import argparse
import random
import time
from pathlib import Path
from typing import List, Optional

from shell_engine import (
    DEFAULT_MOVE_LIMIT,
    DEFAULT_SPEED_MS,
    SHELL_COUNT,
    BoardGeometry,
    ConfigurationError,
    TrialConfig,
    pretty_print,
)
from shell_log import EmptyLogError, default_export_filename
from shell_session import GameSession
from shell_telemetry import configure_logging, sink_from_env


def prompt_yes_no(prompt: str) -> bool:
    while True:
        try:
            raw = input(prompt).strip().lower()
        except EOFError:
            print()
            return False
        if raw in {"y", "yes"}:
            return True
        if raw in {"n", "no"}:
            return False
        print("Please enter 'y' or 'n'.")


def read_choice(prompt: str, shell_count: int) -> Optional[int]:
    """Return the chosen slot (0-based), or ``None`` to quit."""
    while True:
        try:
            raw = input(prompt).strip().lower()
        except EOFError:
            print()
            return None
        if raw in {"q", "quit"}:
            return None
        if raw.isdigit() and 1 <= int(raw) <= shell_count:
            return int(raw) - 1
        print(f"Please enter a shell number 1-{shell_count}, or q to quit.")


def settle_layout(session: GameSession) -> None:
    # A terminal has no animations; report every shell as settled at once.
    generation = session.trial.layout_generation
    for slot in range(len(session.board)):
        session.on_animation_settled(generation, slot)


def run_trial(session: GameSession) -> bool:
    """Play one trial; returns ``False`` when the participant quits before choosing."""
    geometry = session.trial.geometry
    board = session.start_trial()
    winner = session.trial.winning_index
    print()
    print(pretty_print(board, geometry, show_ball=True))
    print(f"The ball is under shell {winner + 1}. Watch closely...")

    delay_s = session.trial.config.transition_speed_ms / 1000.0
    while not session.trial.is_finished:
        time.sleep(delay_s)
        settle_layout(session)
        print()
        print(f"Move {session.trial.moves_done}/{session.trial.config.move_limit}")
        print(pretty_print(session.board, geometry))

    choice = read_choice(
        f"Which shell hides the ball? (1-{len(session.board)}, q=quit): ",
        len(session.board),
    )
    if choice is None:
        return False
    record = session.select_shell(choice)
    if record is None:
        return True
    verdict = "Correct!" if record.is_correct else "Wrong!"
    print(f"{verdict} Response time {record.response_time_seconds:.2f}s")
    if not record.is_correct:
        print(f"The ball was under shell {session.trial.winning_index + 1}.")
    return True


def export_log(session: GameSession, output_dir: Path) -> Optional[Path]:
    path = output_dir / default_export_filename()
    try:
        saved = session.save_csv(path)
    except EmptyLogError:
        print("No trials were recorded; nothing to export.")
        return None
    print(f"Saved {len(session.log)} trial(s) to {saved}")
    return saved


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Shell game experiment (terminal)")
    parser.add_argument("--moves", type=int, default=DEFAULT_MOVE_LIMIT, help="shuffles per trial (default: 3)")
    parser.add_argument(
        "--speed",
        type=int,
        default=DEFAULT_SPEED_MS,
        help="pause between layouts in milliseconds (default: 200)",
    )
    parser.add_argument("--name", default="", help="participant name (default: Anonymous)")
    parser.add_argument("--shells", type=int, default=SHELL_COUNT, help="number of shells (default: 3, at most 4 on the 700px board)")
    parser.add_argument("--seed", type=int, default=None, help="random seed for reproducible trials")
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("."),
        help="directory for the CSV export (default: current directory)",
    )
    parser.add_argument("--log-level", default=None, help="logging level (default: $LOG_LEVEL or INFO)")
    args = parser.parse_args(argv)

    configure_logging(args.log_level)

    rng = random.Random(args.seed) if args.seed is not None else None
    try:
        session = GameSession(
            BoardGeometry(shell_count=args.shells),
            rng=rng,
            config=TrialConfig(args.moves, args.speed),
            participant_name=args.name,
        )
    except ConfigurationError as exc:
        print(f"Invalid settings: {exc}")
        return 2

    telemetry_sink = sink_from_env()
    session.telemetry_sink = telemetry_sink
    try:
        while prompt_yes_no("Start a trial? (y/n): "):
            try:
                played = run_trial(session)
            except ConfigurationError as exc:
                print(f"Invalid settings: {exc}")
                return 2
            if not played:
                break
        export_log(session, args.output_dir)
    finally:
        if telemetry_sink is not None:
            telemetry_sink.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
