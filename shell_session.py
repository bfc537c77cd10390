"""Trial state machine and the game session that ties board, log and telemetry together."""

from __future__ import annotations

import logging
import random
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Set

from shell_engine import (
    Board,
    BoardGeometry,
    Shell,
    TrialConfig,
    assign_winner,
    initial_board,
    moves_done,
    shuffle,
    validate_config,
    validate_geometry,
    winning_index,
)
from shell_log import LogRecord, TrialLogger
from shell_telemetry import (
    ExportEvent,
    SelectionEvent,
    ShuffleEvent,
    TelemetrySink,
    TrialStartEvent,
    emit_dataclass_event,
)

IDLE = "IDLE"
RUNNING = "RUNNING"
AWAITING_SELECTION = "AWAITING_SELECTION"
COMPLETED = "COMPLETED"

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    pass


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TrialStateMachine:
    """
    Board history, locked config and selection for the current trial.

    Every rendered layout gets a generation number. The view reports one
    settle per shell per layout through :meth:`settle`; once every shell of
    the current generation has settled, exactly one shuffle runs and opens
    the next generation. Settles tagged with an older generation belong to a
    discarded layout and are dropped.
    """

    def __init__(
        self,
        geometry: BoardGeometry = BoardGeometry(),
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        validate_geometry(geometry)
        self.geometry = geometry
        self.rng = rng or random.Random()
        self.clock = clock

        self.history: List[Board] = [initial_board(geometry)]
        self.config = TrialConfig()
        self.selection: Optional[Shell] = None
        self.selection_index: Optional[int] = None
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.layout_generation = 0
        self._settled: Set[int] = set()

    @property
    def board(self) -> Board:
        return self.history[-1]

    @property
    def moves_done(self) -> int:
        return moves_done(self.history)

    @property
    def is_started(self) -> bool:
        return any(shell.has_ball for shell in self.history[0])

    @property
    def is_ball_visible(self) -> bool:
        return len(self.history) == 1 and self.is_started

    @property
    def is_finished(self) -> bool:
        return self.moves_done == self.config.move_limit

    @property
    def game_ended(self) -> bool:
        return self.selection is not None

    @property
    def phase(self) -> str:
        if not self.is_started:
            return IDLE
        if self.selection is not None:
            return COMPLETED
        if self.is_finished:
            return AWAITING_SELECTION
        return RUNNING

    @property
    def winning_index(self) -> Optional[int]:
        return winning_index(self.history[0])

    def start(self, config: TrialConfig) -> Board:
        validate_config(config)
        board, winner = assign_winner(self.board, self.rng)
        self.history = [board]
        self.config = config
        self.selection = None
        self.selection_index = None
        self.start_time = self.clock()
        self.end_time = None
        self._open_generation()
        logger.debug("trial started: winner=%d generation=%d", winner, self.layout_generation)
        return board

    def settle(self, generation: int, shell_index: int) -> Optional[Board]:
        """Record one shell finishing its move; returns the new board when this settle triggers a shuffle."""
        if generation != self.layout_generation:
            logger.debug("ignoring settle for stale generation %d (current %d)", generation, self.layout_generation)
            return None
        if not self.is_started:
            return None
        if shell_index < 0 or shell_index >= len(self.board):
            logger.debug("ignoring settle for unknown shell %d", shell_index)
            return None
        if shell_index in self._settled:
            return None
        self._settled.add(shell_index)
        if len(self._settled) < len(self.board):
            return None
        return self.shuffle()

    def shuffle(self) -> Optional[Board]:
        new_board = shuffle(self.history, self.config, self.geometry, self.rng)
        if new_board is not None:
            self._open_generation()
        return new_board

    def select(self, index: int) -> Shell:
        self._require_phase(AWAITING_SELECTION)
        if index < 0 or index >= len(self.board):
            raise ValueError(f"shell index must be 0..{len(self.board) - 1}")
        shell = self.board[index]
        self.selection = shell
        self.selection_index = index
        self.end_time = self.clock()
        return shell

    def _require_phase(self, expected: str) -> None:
        current = self.phase
        if current != expected:
            raise InvalidTransitionError(f"expected {expected}, trial is {current}")

    def _open_generation(self) -> None:
        self.layout_generation += 1
        self._settled = set()


class GameSession:
    """Everything one participant's run owns: UI-selected config, current trial and the trial log."""

    def __init__(
        self,
        geometry: BoardGeometry = BoardGeometry(),
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utc_now,
        telemetry_sink: Optional[TelemetrySink] = None,
        config: TrialConfig = TrialConfig(),
        participant_name: str = "",
    ) -> None:
        self.trial = TrialStateMachine(geometry, rng=rng, clock=clock)
        self.log = TrialLogger()
        self.telemetry_sink = telemetry_sink
        self.selected_config = config
        self.participant_name = participant_name
        self.trials_started = 0

    @property
    def board(self) -> Board:
        return self.trial.board

    @property
    def can_configure(self) -> bool:
        return self.trial.phase in (IDLE, COMPLETED)

    def set_difficulty(self, move_limit: int) -> bool:
        if not self.can_configure:
            logger.debug("difficulty change to %d rejected during %s", move_limit, self.trial.phase)
            return False
        self.selected_config = replace(self.selected_config, move_limit=int(move_limit))
        return True

    def set_speed(self, speed_ms: int) -> bool:
        if not self.can_configure:
            logger.debug("speed change to %d rejected during %s", speed_ms, self.trial.phase)
            return False
        self.selected_config = replace(self.selected_config, transition_speed_ms=int(speed_ms))
        return True

    def set_participant_name(self, name: str) -> bool:
        if not self.can_configure:
            return False
        self.participant_name = name
        return True

    def start_trial(self) -> Board:
        board = self.trial.start(self.selected_config)
        self.trials_started += 1
        logger.info(
            "trial %d started: moves=%d speed=%dms",
            self.trials_started,
            self.trial.config.move_limit,
            self.trial.config.transition_speed_ms,
        )
        emit_dataclass_event(
            self.telemetry_sink,
            "trial_start",
            TrialStartEvent(
                trial_number=self.trials_started,
                move_limit=self.trial.config.move_limit,
                transition_speed_ms=self.trial.config.transition_speed_ms,
                winning_index=self.trial.winning_index,
                generation=self.trial.layout_generation,
            ),
        )
        return board

    def on_animation_settled(self, generation: int, shell_index: int) -> Optional[Board]:
        new_board = self.trial.settle(generation, shell_index)
        if new_board is not None:
            emit_dataclass_event(
                self.telemetry_sink,
                "shuffle",
                ShuffleEvent(
                    move=self.trial.moves_done,
                    move_limit=self.trial.config.move_limit,
                    final=self.trial.is_finished,
                    generation=self.trial.layout_generation,
                    positions=[(shell.x, shell.y) for shell in new_board],
                ),
            )
        return new_board

    def select_shell(self, index: int) -> Optional[LogRecord]:
        try:
            shell = self.trial.select(index)
        except InvalidTransitionError as exc:
            logger.debug("selection of shell %d ignored: %s", index, exc)
            return None
        record = self.log.append(
            self.trial.config,
            shell,
            self.trial.start_time,
            self.trial.end_time,
            self.participant_name,
        )
        emit_dataclass_event(
            self.telemetry_sink,
            "selection",
            SelectionEvent(
                trial_number=self.trials_started,
                shell_index=index,
                is_correct=record.is_correct,
                response_time_s=f"{record.response_time_seconds:.2f}",
                move_limit=record.move_limit,
            ),
        )
        return record

    def export_csv(self) -> str:
        return self.log.export()

    def save_csv(self, path: Path) -> Path:
        saved = self.log.save_csv(path)
        emit_dataclass_event(self.telemetry_sink, "export", ExportEvent(records=len(self.log), path=str(saved)))
        return saved
