"""Log Monitor analysis engine.

Pairs START/END lifecycle events by PID and reports how long each job ran:
- CSV logs with a header row (column roles resolved by keyword)
- CSV logs without a header
- Freeform text lines (regex heuristics)
- Midnight wraparound (at most one rollover per interval)
- OK / WARNING / ERROR severity from elapsed duration

The engine never raises on bad input: lines that no strategy can read are
skipped. ``analyze`` is a pure function of its arguments.
"""

from __future__ import annotations

import logging
import re
from functools import cmp_to_key
from typing import Literal, Protocol, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)

# ============================================================
# TYPE ALIASES
# ============================================================

EventStatus: TypeAlias = Literal["START", "END"]
Severity: TypeAlias = Literal["OK", "WARNING", "ERROR"]
ColumnRole: TypeAlias = Literal["time", "pid", "status", "description"]
Seconds: TypeAlias = int

SECONDS_PER_DAY: Seconds = 24 * 3600

# ============================================================
# PYDANTIC MODELS
# ============================================================


class BlankRow(BaseModel):
    """An empty input line."""

    model_config = ConfigDict(frozen=True)


class FieldsRow(BaseModel):
    """A tokenized line with at least one (possibly empty) field."""

    model_config = ConfigDict(frozen=True)

    fields: list[str]


Row: TypeAlias = BlankRow | FieldsRow

BLANK_ROW = BlankRow()


class LogEvent(BaseModel):
    """A START or END event extracted from one row or line."""

    model_config = ConfigDict(frozen=True)

    time: str
    pid: str
    status: EventStatus
    description: str = ""
    raw: str


class PendingStart(BaseModel):
    """A START still waiting for its END."""

    time: str
    description: str
    raw: str
    sequence_index: int


class CompletedInterval(BaseModel):
    """A START/END pair for one PID."""

    pid: str
    description: str
    start_time: str
    end_time: str
    duration_seconds: Seconds = Field(ge=0)
    raw_start: str
    raw_end: str
    severity: Severity | None = None  # Set by the classifier


class OrphanEnd(BaseModel):
    """An END with no open START for its PID."""

    pid: str
    description: str
    end_time: str
    raw: str


class IncompleteStart(BaseModel):
    """A START never closed by an END."""

    pid: str
    description: str
    start_time: str
    raw: str


class LogReport(BaseModel):
    """Result of one analysis call."""

    completed: list[CompletedInterval] = Field(default_factory=list)
    orphans: list[OrphanEnd] = Field(default_factory=list)
    incompletes: list[IncompleteStart] = Field(default_factory=list)
    entries: list[LogEvent] = Field(default_factory=list)


class SeverityThresholds(BaseModel):
    """Configurable duration thresholds (exclusive) for severity classification."""

    warning_seconds: Seconds = Field(default=5 * 60, ge=0)
    error_seconds: Seconds = Field(default=10 * 60, ge=0)

    @model_validator(mode="after")
    def _check_order(self) -> SeverityThresholds:
        if self.error_seconds < self.warning_seconds:
            raise ValueError(
                f"error threshold ({self.error_seconds}s) must not be below "
                f"warning threshold ({self.warning_seconds}s)"
            )
        return self


class ReportSummary(BaseModel):
    """Headline counts for a report."""

    total: int
    ok_count: int
    warning_count: int
    error_count: int
    incomplete_count: int
    orphan_count: int
    entry_count: int


class KeywordRule(BaseModel):
    """Named rule that matches text containing any of its keywords."""

    model_config = ConfigDict(frozen=True)

    name: str
    keywords: tuple[str, ...]

    def matches(self, text: str) -> bool:
        return any(keyword in text for keyword in self.keywords)


# ============================================================
# DETECTOR RULES
# ============================================================

# Every rule must match the joined first row for it to count as a header.
HEADER_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(name="time", keywords=("time", "timestamp")),
    KeywordRule(name="pid", keywords=("pid",)),
    KeywordRule(name="status", keywords=("status", "start", "end")),
)

# Per role, the first rule that matches any column wins.
COLUMN_RULES: dict[ColumnRole, tuple[KeywordRule, ...]] = {
    "time": (
        KeywordRule(name="time", keywords=("time",)),
        KeywordRule(name="timestamp", keywords=("timestamp",)),
    ),
    "pid": (KeywordRule(name="pid", keywords=("pid",)),),
    "status": (
        KeywordRule(name="status", keywords=("status", "action", "state")),
        KeywordRule(name="start-or-end", keywords=("start", "end")),
    ),
    "description": (
        KeywordRule(name="description", keywords=("desc", "description", "message", "job")),
    ),
}

# ============================================================
# CLOCK TIMES
# ============================================================

CLOCK_TIME_PATTERN: re.Pattern[str] = re.compile(r"(\d{2}):(\d{2}):(\d{2})")


def find_clock_time(text: str) -> re.Match[str] | None:
    """First HH:MM:SS substring that is a real time of day (00:00:00 to 23:59:59)."""
    for match in CLOCK_TIME_PATTERN.finditer(text):
        hours, minutes, seconds = (int(part) for part in match.groups())
        if hours < 24 and minutes < 60 and seconds < 60:
            return match
    return None


# ============================================================
# CSV TOKENIZING
# ============================================================

LINE_SPLIT_PATTERN: re.Pattern[str] = re.compile(r"\r?\n")


def tokenize_row(line: str) -> Row:
    """Split one line into quote-aware CSV fields.

    A doubled quote inside a quoted field is a literal quote. Quoted fields
    cannot span lines.
    """
    if not line:
        return BLANK_ROW

    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    while i < len(line):
        ch = line[i]
        if ch == '"':
            if in_quotes and line[i + 1 : i + 2] == '"':
                current.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
        elif ch == "," and not in_quotes:
            fields.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1
    fields.append("".join(current))
    return FieldsRow(fields=fields)


def split_lines(text: str) -> list[str]:
    """Split text on LF or CRLF."""
    return LINE_SPLIT_PATTERN.split(text)


def parse_csv(text: str) -> list[Row]:
    """Tokenize every line of a document."""
    return [tokenize_row(line) for line in split_lines(text)]


# ============================================================
# HEADER DETECTION & COLUMN MAPPING
# ============================================================


def looks_like_header(row: Row | None) -> bool:
    """Return True when the row names time, pid and status columns."""
    if not isinstance(row, FieldsRow):
        return False
    joined = "|".join(row.fields).lower()
    return all(rule.matches(joined) for rule in HEADER_RULES)


class ColumnMap(BaseModel):
    """Column indexes resolved from a header row."""

    model_config = ConfigDict(frozen=True)

    time_index: int | None = None
    pid_index: int | None = None
    status_index: int | None = None
    description_index: int | None = None

    @property
    def is_complete(self) -> bool:
        return None not in (self.time_index, self.pid_index, self.status_index)


def resolve_column(header: list[str], rules: tuple[KeywordRule, ...]) -> int | None:
    """Index of the first column matched by the first matching rule."""
    for rule in rules:
        for index, name in enumerate(header):
            if rule.matches(name):
                return index
    return None


def resolve_columns(header: list[str]) -> ColumnMap:
    """Resolve semantic column roles from normalized (trimmed, lowercased) header names."""
    return ColumnMap(
        time_index=resolve_column(header, COLUMN_RULES["time"]),
        pid_index=resolve_column(header, COLUMN_RULES["pid"]),
        status_index=resolve_column(header, COLUMN_RULES["status"]),
        description_index=resolve_column(header, COLUMN_RULES["description"]),
    )


def _field_at(fields: list[str], index: int | None) -> str:
    if index is None or index >= len(fields):
        return ""
    return fields[index]


def map_row(fields: list[str], column_map: ColumnMap) -> LogEvent | None:
    """Build an event from a data row using resolved column roles."""
    if not column_map.is_complete:
        return None

    # Date-time cells keep only their clock time
    time_match = find_clock_time(_field_at(fields, column_map.time_index))
    pid = _field_at(fields, column_map.pid_index).strip()
    status = _field_at(fields, column_map.status_index).strip().upper()
    if not time_match or not pid or status not in ("START", "END"):
        return None
    time = time_match.group(0)

    # An empty description cell falls back to the whole row
    description_field = _field_at(fields, column_map.description_index)
    description = description_field.strip() if description_field else " ".join(fields).strip()

    return LogEvent(
        time=time, pid=pid, status=status, description=description, raw=",".join(fields)
    )


# ============================================================
# FLEXIBLE LINE PARSING
# ============================================================


class FlexibleLineParser:
    """Regex heuristics for lines with no usable column layout."""

    PID_PATTERN: re.Pattern[str] = re.compile(r"\b(\d+)\b")
    STATUS_PATTERN: re.Pattern[str] = re.compile(r"\b(START|END)\b", re.IGNORECASE)

    DESCRIPTION_PUNCTUATION = "-:|,"

    def parse(self, line: str) -> LogEvent | None:
        """Extract an event from a single line, or None."""
        time_match = find_clock_time(line)
        if not time_match:
            return None
        pid_match = self._find_pid(line, time_match)
        status_match = self.STATUS_PATTERN.search(line)
        if not pid_match or not status_match:
            return None

        time = time_match.group(0)
        pid = pid_match.group(1)
        status_text = status_match.group(1)

        description = line.replace(time, "", 1).replace(pid, "", 1).replace(status_text, "", 1)
        description = description.strip().strip(self.DESCRIPTION_PUNCTUATION).strip()

        return LogEvent(
            time=time,
            pid=pid,
            status=status_text.upper(),
            description=description,
            raw=line,
        )

    def _find_pid(self, line: str, time_match: re.Match[str]) -> re.Match[str] | None:
        """First standalone digit run outside the timestamp."""
        for match in self.PID_PATTERN.finditer(line):
            if match.end() <= time_match.start() or match.start() >= time_match.end():
                return match
        return None


# ============================================================
# EVENT EXTRACTION
# ============================================================


class RowStrategy(Protocol):
    """Protocol for one way of reading a tokenized data row."""

    name: str

    def extract(self, fields: list[str]) -> LogEvent | None:
        """Return an event for the row, or None to try the next strategy."""
        ...


class ColumnMappedStrategy:
    """Read a row through header-resolved column roles."""

    name: str = "column-mapped"

    def __init__(self, column_map: ColumnMap) -> None:
        self.column_map = column_map

    def extract(self, fields: list[str]) -> LogEvent | None:
        return map_row(fields, self.column_map)


class RejoinedLineStrategy:
    """Rejoin a row with commas and run the flexible line parser on it."""

    name: str = "flexible"

    def __init__(self, parser: FlexibleLineParser) -> None:
        self.parser = parser

    def extract(self, fields: list[str]) -> LogEvent | None:
        return self.parser.parse(",".join(fields))


def extract_with_strategies(
    fields: list[str], strategies: tuple[RowStrategy, ...]
) -> LogEvent | None:
    """Try each strategy in order until one yields an event."""
    for strategy in strategies:
        event = strategy.extract(fields)
        if event is not None:
            if strategy is not strategies[0]:
                logger.debug("Row read by %s fallback: %s", strategy.name, ",".join(fields))
            return event
    return None


def extract_events(text: str, parser: FlexibleLineParser | None = None) -> list[LogEvent]:
    """Parse a whole document into events, preserving document order."""
    parser = parser or FlexibleLineParser()
    rows = [row for row in parse_csv(text) if isinstance(row, FieldsRow)]

    if rows and looks_like_header(rows[0]):
        header = [name.strip().lower() for name in rows[0].fields]
        column_map = resolve_columns(header)
        logger.debug("Header detected, column map: %s", column_map)
        strategies: tuple[RowStrategy, ...] = (
            ColumnMappedStrategy(column_map),
            RejoinedLineStrategy(parser),
        )
        entries: list[LogEvent] = []
        for row in rows[1:]:
            if not row.fields:
                continue
            event = extract_with_strategies(row.fields, strategies)
            if event is None:
                logger.debug("Skipping unreadable row: %s", ",".join(row.fields))
                continue
            entries.append(event)
        return entries

    entries = []
    for line in split_lines(text):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        row = tokenize_row(line)
        if isinstance(row, FieldsRow) and len(row.fields) > 1:
            event = parser.parse(",".join(row.fields))
        else:
            event = parser.parse(line)
        if event is None:
            logger.debug("Skipping unreadable line: %s", line)
            continue
        entries.append(event)
    return entries


# ============================================================
# PAIRING
# ============================================================


def seconds_of(time_text: str) -> Seconds:
    """Convert 'HH:MM:SS' to seconds since midnight."""
    hours, minutes, seconds = (int(part) for part in time_text.split(":"))
    return hours * 3600 + minutes * 60 + seconds


def elapsed_seconds(start_time: str, end_time: str) -> Seconds:
    """Elapsed seconds, assuming one midnight rollover when END precedes START."""
    duration = seconds_of(end_time) - seconds_of(start_time)
    if duration < 0:
        duration += SECONDS_PER_DAY
    return duration


class PairingEngine:
    """Match START/END events per PID with LIFO stack discipline.

    One instance per analysis; state is never shared between calls.
    """

    def __init__(self) -> None:
        self.pending: dict[str, list[PendingStart]] = {}
        self.completed: list[CompletedInterval] = []
        self.orphans: list[OrphanEnd] = []

    def feed(self, index: int, event: LogEvent) -> None:
        """Process one event in document order."""
        if not event.time or not event.pid or not event.status:
            return

        if event.status == "START":
            self.pending.setdefault(event.pid, []).append(
                PendingStart(
                    time=event.time,
                    description=event.description,
                    raw=event.raw,
                    sequence_index=index,
                )
            )
            return

        stack = self.pending.get(event.pid)
        if not stack:
            self.orphans.append(
                OrphanEnd(
                    pid=event.pid,
                    description=event.description,
                    end_time=event.time,
                    raw=event.raw,
                )
            )
            return

        start = stack.pop()
        self.completed.append(
            CompletedInterval(
                pid=event.pid,
                description=start.description or event.description,
                start_time=start.time,
                end_time=event.time,
                duration_seconds=elapsed_seconds(start.time, event.time),
                raw_start=start.raw,
                raw_end=event.raw,
            )
        )

    def run(self, events: list[LogEvent]) -> PairingEngine:
        """Feed every event, in order."""
        for index, event in enumerate(events):
            self.feed(index, event)
        return self

    def incompletes(self) -> list[IncompleteStart]:
        """Starts left open: first-seen PID order, then stack order."""
        return [
            IncompleteStart(
                pid=pid,
                description=pending.description,
                start_time=pending.time,
                raw=pending.raw,
            )
            for pid, stack in self.pending.items()
            for pending in stack
        ]


# ============================================================
# CLASSIFICATION & REPORT ASSEMBLY
# ============================================================


def classify_severity(duration_seconds: Seconds, thresholds: SeverityThresholds) -> Severity:
    """Map a duration to a severity; thresholds are exclusive."""
    if duration_seconds > thresholds.error_seconds:
        return "ERROR"
    if duration_seconds > thresholds.warning_seconds:
        return "WARNING"
    return "OK"


def classify_intervals(
    completed: list[CompletedInterval], thresholds: SeverityThresholds
) -> list[CompletedInterval]:
    """Set severity on every completed interval."""
    for interval in completed:
        interval.severity = classify_severity(interval.duration_seconds, thresholds)
    return completed


def _compare_text(a: str, b: str) -> int:
    return (a > b) - (a < b)


def _compare_intervals(a: CompletedInterval, b: CompletedInterval) -> int:
    if a.start_time and b.start_time:
        return _compare_text(a.start_time, b.start_time)
    if a.end_time and b.end_time:
        return _compare_text(a.end_time, b.end_time)
    return _compare_text(a.pid, b.pid)


def sort_completed(completed: list[CompletedInterval]) -> list[CompletedInterval]:
    """Order intervals by start time, then end time, then PID.

    Times compare as text, so an interval that wrapped past midnight sorts by
    its start time within the same nominal day.
    """
    return sorted(completed, key=cmp_to_key(_compare_intervals))


def assemble_report(
    completed: list[CompletedInterval],
    orphans: list[OrphanEnd],
    incompletes: list[IncompleteStart],
    entries: list[LogEvent],
) -> LogReport:
    """Package the final report."""
    return LogReport(
        completed=sort_completed(completed),
        orphans=list(orphans),
        incompletes=list(incompletes),
        entries=list(entries),
    )


def summarize_report(report: LogReport) -> ReportSummary:
    """Count intervals per severity plus unpaired events."""
    severities = [interval.severity for interval in report.completed]
    return ReportSummary(
        total=len(report.completed),
        ok_count=severities.count("OK"),
        warning_count=severities.count("WARNING"),
        error_count=severities.count("ERROR"),
        incomplete_count=len(report.incompletes),
        orphan_count=len(report.orphans),
        entry_count=len(report.entries),
    )


# ============================================================
# ENTRY POINT
# ============================================================


def analyze(text: str, thresholds: SeverityThresholds | None = None) -> LogReport:
    """Analyze a log buffer and return paired intervals and unpaired events."""
    thresholds = thresholds or SeverityThresholds()

    entries = extract_events(text)
    pairing = PairingEngine().run(entries)
    completed = classify_intervals(pairing.completed, thresholds)
    report = assemble_report(completed, pairing.orphans, pairing.incompletes(), entries)

    logger.info(
        "Parsed %d events: %d completed, %d orphan ends, %d incomplete starts",
        len(report.entries),
        len(report.completed),
        len(report.orphans),
        len(report.incompletes),
    )
    return report
