"""Trial log records and CSV export for the shell game experiment."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import List, Optional, Tuple

from shell_engine import Shell, TrialConfig

CSV_HEADERS: Tuple[str, ...] = ("Timestamp", "Participant", "Speed(ms)", "Moves", "Correct", "ResponseTime(s)")
CSV_BOM = "\ufeff"
ANONYMOUS = "Anonymous"
EXPORT_FILENAME_PATTERN = "shell_game_data_{day}.csv"

logger = logging.getLogger(__name__)


class EmptyLogError(LookupError):
    pass


@dataclass(frozen=True)
class LogRecord:
    timestamp: str
    participant_name: str
    transition_speed_ms: int
    move_limit: int
    is_correct: bool
    response_time_seconds: Decimal


def format_timestamp(moment: datetime) -> str:
    """UTC ISO-8601 with milliseconds and a ``Z`` suffix, e.g. ``2024-01-01T00:00:00.000Z``."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def response_time_seconds(start: Optional[datetime], end: datetime) -> Decimal:
    if start is None:
        return Decimal("0.00")
    elapsed = (end - start).total_seconds()
    return Decimal(str(elapsed)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def quote_name(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def format_row(record: LogRecord) -> str:
    return ",".join(
        [
            record.timestamp,
            quote_name(record.participant_name),
            str(record.transition_speed_ms),
            str(record.move_limit),
            "1" if record.is_correct else "0",
            f"{record.response_time_seconds:.2f}",
        ]
    )


def default_export_filename(today: Optional[date] = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    return EXPORT_FILENAME_PATTERN.format(day=today.isoformat())


class TrialLogger:
    """Append-only log of completed trials."""

    def __init__(self) -> None:
        self._records: List[LogRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> Tuple[LogRecord, ...]:
        return tuple(self._records)

    def append(
        self,
        config: TrialConfig,
        selection: Shell,
        start: Optional[datetime],
        end: datetime,
        participant_name: str,
    ) -> LogRecord:
        record = LogRecord(
            timestamp=format_timestamp(end),
            participant_name=participant_name or ANONYMOUS,
            transition_speed_ms=config.transition_speed_ms,
            move_limit=config.move_limit,
            is_correct=selection.has_ball,
            response_time_seconds=response_time_seconds(start, end),
        )
        self._records.append(record)
        logger.info(
            "trial %d logged: participant=%s moves=%d speed=%dms correct=%s rt=%ss",
            len(self._records),
            record.participant_name,
            record.move_limit,
            record.transition_speed_ms,
            record.is_correct,
            record.response_time_seconds,
        )
        return record

    def export(self) -> str:
        if not self._records:
            raise EmptyLogError("no trials have been logged yet")
        lines = [",".join(CSV_HEADERS)]
        lines.extend(format_row(record) for record in self._records)
        return CSV_BOM + "\n".join(lines)

    def save_csv(self, path: Path) -> Path:
        # Export first so an empty log never creates the file.
        content = self.export()
        path = Path(path)
        with path.open("w", encoding="utf-8", newline="") as handle:
            handle.write(content)
        logger.info("exported %d trial records to %s", len(self._records), path)
        return path
