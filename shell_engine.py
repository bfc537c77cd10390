"""Board model, position generator and shuffle engine for the shell game."""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

BOARD_WIDTH = 700
BOARD_HEIGHT = 500
SHELL_SIZE = 100
SHELL_COUNT = 3
INITIAL_X_START = 150
INITIAL_X_STEP = 150
INITIAL_Y = 100

MOVE_LIMIT_CHOICES: Tuple[int, ...] = (3, 5, 7, 9)
SPEED_CHOICES_MS: Tuple[int, ...] = (200, 350, 500, 650)
DEFAULT_MOVE_LIMIT = 3
DEFAULT_SPEED_MS = 200


class ConfigurationError(ValueError):
    pass


@dataclass(frozen=True)
class Shell:
    x: int
    y: int
    has_ball: bool = False


Board = Tuple[Shell, ...]


@dataclass(frozen=True)
class TrialConfig:
    move_limit: int = DEFAULT_MOVE_LIMIT
    transition_speed_ms: int = DEFAULT_SPEED_MS


@dataclass(frozen=True)
class BoardGeometry:
    width: int = BOARD_WIDTH
    height: int = BOARD_HEIGHT
    shell_size: int = SHELL_SIZE
    shell_count: int = SHELL_COUNT


def validate_config(config: TrialConfig) -> None:
    if config.move_limit < 1:
        raise ConfigurationError(f"move limit must be positive, got {config.move_limit}")
    if config.transition_speed_ms < 0:
        raise ConfigurationError(f"transition speed must be non-negative, got {config.transition_speed_ms}")


def validate_geometry(geometry: BoardGeometry) -> None:
    if geometry.shell_count < 2:
        raise ConfigurationError(f"need at least 2 shells, got {geometry.shell_count}")
    if geometry.shell_size <= 0:
        raise ConfigurationError("shell size must be positive")
    if geometry.width <= geometry.shell_size or geometry.height <= geometry.shell_size:
        raise ConfigurationError(
            f"board {geometry.width}x{geometry.height} cannot hold a {geometry.shell_size}px shell"
        )
    last_start_x = INITIAL_X_START + INITIAL_X_STEP * (geometry.shell_count - 1)
    if last_start_x > geometry.width - geometry.shell_size or INITIAL_Y > geometry.height - geometry.shell_size:
        raise ConfigurationError(
            f"starting row of {geometry.shell_count} shells does not fit a {geometry.width}x{geometry.height} board"
        )
    if geometry.shell_count > shell_capacity(geometry):
        raise ConfigurationError(
            f"{geometry.shell_count} shells cannot always be placed apart on a {geometry.width}x{geometry.height} board"
        )


def shell_capacity(geometry: BoardGeometry) -> int:
    """
    Largest shell count the position generator can always place.

    Each placed shell rules out at most a (2S+1) square of top-left corners, so
    while the blocked area stays below the whole corner area a free spot is left.
    """
    corners = (geometry.width - geometry.shell_size) * (geometry.height - geometry.shell_size)
    blocked = (2 * geometry.shell_size + 1) ** 2
    return (corners - 1) // blocked + 1


def initial_board(geometry: BoardGeometry = BoardGeometry()) -> Board:
    """Fixed row of shells shown before the first trial; nobody holds the ball yet."""
    return tuple(
        Shell(INITIAL_X_START + i * INITIAL_X_STEP, INITIAL_Y, False) for i in range(geometry.shell_count)
    )


def moves_done(history: Sequence[Board]) -> int:
    return len(history) - 1


def winning_index(board: Board) -> Optional[int]:
    for i, shell in enumerate(board):
        if shell.has_ball:
            return i
    return None


def assign_winner(board: Board, rng: Optional[random.Random] = None) -> Tuple[Board, int]:
    rng = rng or random
    winner = rng.randrange(len(board))
    new_board = tuple(replace(shell, has_ball=(i == winner)) for i, shell in enumerate(board))
    return new_board, winner


def is_shell_overlap(accepted: Sequence[Shell], candidate: Shell, shell_size: int = SHELL_SIZE) -> bool:
    # Closed boundary: shells exactly shell_size apart still count as overlapping.
    return any(
        abs(candidate.x - other.x) <= shell_size and abs(candidate.y - other.y) <= shell_size
        for other in accepted
    )


def _random_position(shell: Shell, geometry: BoardGeometry, rng) -> Shell:
    return replace(
        shell,
        x=rng.randrange(geometry.width - geometry.shell_size),
        y=rng.randrange(geometry.height - geometry.shell_size),
    )


def generate_positions(
    board: Board,
    geometry: BoardGeometry = BoardGeometry(),
    rng: Optional[random.Random] = None,
) -> Board:
    """
    Place every shell at a fresh random spot, keeping slot order and ``has_ball``.

    Shells are placed in slot order and each one is redrawn until it clears all
    shells already placed in this pass; earlier shells are never moved again.
    There is no retry cap; ``validate_geometry`` keeps the shell count within
    ``shell_capacity`` so a free spot always remains for the next shell.
    """
    rng = rng or random
    accepted: List[Shell] = []
    for shell in board:
        candidate = _random_position(shell, geometry, rng)
        while is_shell_overlap(accepted, candidate, geometry.shell_size):
            candidate = _random_position(shell, geometry, rng)
        accepted.append(candidate)
    return tuple(accepted)


def final_shuffle(original: Board, rng: Optional[random.Random] = None) -> Board:
    """
    Permute the original x values among the shells, drawing without replacement.

    The y values stay at the original board's values, not the latest board's.
    """
    rng = rng or random
    available = [shell.x for shell in original]
    shuffled: List[Shell] = []
    for shell in original:
        pick = rng.randrange(len(available))
        shuffled.append(replace(shell, x=available.pop(pick)))
    return tuple(shuffled)


def shuffle(
    history: List[Board],
    config: TrialConfig,
    geometry: BoardGeometry = BoardGeometry(),
    rng: Optional[random.Random] = None,
) -> Optional[Board]:
    """Append the next layout to ``history`` and return it, or ``None`` once the limit is hit."""
    done = moves_done(history)
    if done >= config.move_limit:
        return None
    is_final_move = done == config.move_limit - 1
    if is_final_move:
        new_board = final_shuffle(history[0], rng)
    else:
        new_board = generate_positions(history[-1], geometry, rng)
    history.append(new_board)
    return new_board


def pretty_print(board: Board, geometry: BoardGeometry = BoardGeometry(), show_ball: bool = False) -> str:
    """
    Coarse ASCII view of a board.

    Each shell is drawn as ``[n]`` (slot number, 1-based) at its scaled top-left
    corner; with ``show_ball`` the winning shell is drawn as ``(o)``.
    """
    cols = geometry.width // 20
    rows = geometry.height // 50
    grid = [[" "] * cols for _ in range(rows)]
    for slot, shell in enumerate(board):
        row = min(rows - 1, shell.y // 50)
        col = min(cols - 3, shell.x // 20)
        label = "(o)" if show_ball and shell.has_ball else f"[{slot + 1}]"
        for offset, ch in enumerate(label[:3]):
            grid[row][col + offset] = ch

    border = "+" + "-" * cols + "+"
    lines = [border]
    lines.extend("|" + "".join(row) + "|" for row in grid)
    lines.append(border)
    return "\n".join(lines)
