import pytest
from pydantic import ValidationError

from log_monitor.engine import (
    BLANK_ROW,
    FieldsRow,
    FlexibleLineParser,
    LogEvent,
    PairingEngine,
    SeverityThresholds,
    analyze,
    classify_severity,
    elapsed_seconds,
    extract_events,
    find_clock_time,
    looks_like_header,
    map_row,
    parse_csv,
    resolve_columns,
    seconds_of,
    summarize_report,
    tokenize_row,
)

HEADER_CSV = "\n".join(
    [
        "time,pid,status,description",
        "12:00:00,46578,START,Job A processing",
        "12:04:00,46578,END,Job A finished",
        "12:10:00,12345,START,Job B processing",
        "12:22:00,12345,END,Job B finished",
    ]
)


def _event(time, pid, status, description=""):
    return LogEvent(
        time=time, pid=pid, status=status, description=description, raw=f"{time} {pid} {status}"
    )


# --- tokenizing ---------------------------------------------------------


def test_tokenize_doubled_quote_inside_quoted_field():
    assert tokenize_row('"Job, ""A"""') == FieldsRow(fields=['Job, "A"'])


def test_tokenize_splits_on_unquoted_commas_and_keeps_empty_fields():
    assert tokenize_row("a,b,,c").fields == ["a", "b", "", "c"]
    assert tokenize_row(",").fields == ["", ""]


def test_tokenize_blank_line_is_distinct_from_single_empty_field():
    assert tokenize_row("") is BLANK_ROW
    assert tokenize_row(" ") == FieldsRow(fields=[" "])


def test_parse_csv_handles_crlf():
    rows = parse_csv("a,b\r\n\r\nc")
    assert rows == [FieldsRow(fields=["a", "b"]), BLANK_ROW, FieldsRow(fields=["c"])]


# --- header detection & column mapping ----------------------------------


def test_header_detected_in_any_case():
    assert looks_like_header(FieldsRow(fields=["Time", "PID", "Status"]))
    assert looks_like_header(FieldsRow(fields=["TIMESTAMP", "Pid", "Status", "Message"]))


@pytest.mark.parametrize(
    "fields",
    [
        ["pid", "status", "description"],
        ["time", "status", "description"],
        ["time", "pid", "description"],
    ],
)
def test_header_requires_all_keyword_classes(fields):
    assert not looks_like_header(FieldsRow(fields=fields))


def test_blank_row_is_never_a_header():
    assert not looks_like_header(BLANK_ROW)
    assert not looks_like_header(None)


def test_resolve_columns_uses_rule_order():
    column_map = resolve_columns(["timestamp", "pid", "action", "message"])
    assert column_map.time_index == 0
    assert column_map.pid_index == 1
    assert column_map.status_index == 2
    assert column_map.description_index == 3


def test_resolve_columns_status_falls_back_to_start_or_end_name():
    column_map = resolve_columns(["time", "pid", "start_or_end"])
    assert column_map.status_index == 2
    assert column_map.description_index is None


def test_map_row_rejects_unknown_status_value():
    column_map = resolve_columns(["time", "pid", "status", "description"])
    assert map_row(["12:00:00", "1", "STARTED", "x"], column_map) is None
    assert map_row(["12:00:00", "", "START", "x"], column_map) is None


def test_map_row_without_description_column_uses_whole_row():
    column_map = resolve_columns(["time", "pid", "status"])
    event = map_row(["12:00:00", "1", "end"], column_map)
    assert event is not None
    assert event.status == "END"
    assert event.description == "12:00:00 1 end"
    assert event.raw == "12:00:00,1,end"


# --- flexible line parsing -------------------------------------------------


def test_flexible_parser_space_delimited_line():
    event = FlexibleLineParser().parse("12:30:00 55555 START AnotherJob")
    assert event == LogEvent(
        time="12:30:00",
        pid="55555",
        status="START",
        description="AnotherJob",
        raw="12:30:00 55555 START AnotherJob",
    )


def test_flexible_parser_fields_in_any_order():
    event = FlexibleLineParser().parse("start 777 at 08:15:30")
    assert event is not None
    assert (event.time, event.pid, event.status) == ("08:15:30", "777", "START")
    assert event.description == "at"


def test_flexible_parser_trims_separator_punctuation():
    event = FlexibleLineParser().parse("12:00:00|42|END|Nightly build")
    assert event is not None
    assert event.pid == "42"
    assert event.status == "END"
    assert event.description == "Nightly build"


def test_flexible_parser_tolerates_surrounding_punctuation():
    event = FlexibleLineParser().parse("[12:00:01] pid=4321 | end | backup done")
    assert event is not None
    assert (event.time, event.pid, event.status) == ("12:00:01", "4321", "END")


@pytest.mark.parametrize(
    "line",
    [
        "no time here 123 START",
        "12:30:00 START without a pid",
        "12:30:00 55555 STARTED",
        "",
    ],
)
def test_flexible_parser_requires_time_pid_and_status(line):
    assert FlexibleLineParser().parse(line) is None


# --- extraction -----------------------------------------------------------


def test_header_branch_falls_back_to_flexible_parser():
    text = "time,pid,status,description\n12:00:00,88,,START job"
    [event] = extract_events(text)
    assert event.pid == "88"
    assert event.status == "START"
    assert event.description == "job"


def test_header_branch_reads_quoted_description():
    text = 'Timestamp,PID,Status,Message\n08:00:00,9,start,"Load, stage ""1"""'
    [event] = extract_events(text)
    assert event.status == "START"
    assert event.description == 'Load, stage "1"'
    assert event.raw == '08:00:00,9,start,Load, stage "1"'


def test_no_header_branch_skips_comments_and_blank_lines():
    text = "# 12:00:00 1 START\n\n   \n12:00:00,5,START,Import\nnot an event"
    [event] = extract_events(text)
    assert event.pid == "5"
    assert event.description == "Import"


def test_header_found_after_leading_blank_lines():
    [event] = extract_events("\n\ntime,pid,status\n12:00:00,1,START")
    assert event.pid == "1"
    assert event.description == "12:00:00 1 START"
    assert event.raw == "12:00:00,1,START"


def test_header_branch_keeps_clock_time_from_date_time_cell():
    text = "\n".join(
        [
            "timestamp,pid,status,description",
            "2024-01-01 12:00:00,1,START,a",
            "2024-01-01 12:05:00,1,END,a",
        ]
    )
    report = analyze(text)
    [interval] = report.completed
    assert (interval.pid, interval.start_time, interval.end_time) == ("1", "12:00:00", "12:05:00")
    assert interval.duration_seconds == 300
    assert interval.severity == "OK"


def test_header_branch_skips_rows_without_full_clock_time():
    report = analyze("time,pid,status\n12:00,1,START\n12:05,1,END")
    assert report.entries == []
    assert report.completed == []


def test_out_of_range_times_are_not_events():
    assert find_clock_time("25:00:00") is None
    assert find_clock_time("12:60:00") is None
    assert find_clock_time("99:99:99 then 10:00:00").group(0) == "10:00:00"
    assert find_clock_time("23:59:59").group(0) == "23:59:59"

    report = analyze("25:00:00 1 START a\n00:00:00 1 END a")
    assert report.completed == []
    assert [(o.pid, o.end_time) for o in report.orphans] == [("1", "00:00:00")]


# --- pairing -------------------------------------------------------------


def test_seconds_of_and_wraparound():
    assert seconds_of("01:02:03") == 3723
    assert elapsed_seconds("23:55:00", "00:10:00") == 900
    assert elapsed_seconds("10:00:00", "10:00:00") == 0


def test_pairing_is_lifo_per_pid():
    pairing = PairingEngine().run(
        [
            _event("10:00:00", "7", "START", "first"),
            _event("10:05:00", "7", "START", "second"),
            _event("10:06:00", "7", "END"),
            _event("10:20:00", "7", "END"),
        ]
    )
    assert [(c.start_time, c.end_time) for c in pairing.completed] == [
        ("10:05:00", "10:06:00"),
        ("10:00:00", "10:20:00"),
    ]
    assert [c.description for c in pairing.completed] == ["second", "first"]
    assert pairing.orphans == []
    assert pairing.incompletes() == []


def test_pairing_uses_end_description_when_start_has_none():
    pairing = PairingEngine().run(
        [_event("10:00:00", "3", "START"), _event("10:01:00", "3", "END", "done")]
    )
    assert pairing.completed[0].description == "done"


def test_orphan_end_is_not_retried_against_later_start():
    pairing = PairingEngine().run(
        [_event("09:00:00", "4", "END", "early"), _event("09:01:00", "4", "START", "late")]
    )
    assert pairing.completed == []
    assert [o.end_time for o in pairing.orphans] == ["09:00:00"]
    assert [i.start_time for i in pairing.incompletes()] == ["09:01:00"]


def test_incompletes_follow_first_seen_pid_then_stack_order():
    pairing = PairingEngine().run(
        [
            _event("08:00:00", "2", "START"),
            _event("08:01:00", "1", "START"),
            _event("08:02:00", "2", "START"),
        ]
    )
    assert [(i.pid, i.start_time) for i in pairing.incompletes()] == [
        ("2", "08:00:00"),
        ("2", "08:02:00"),
        ("1", "08:01:00"),
    ]


# --- classification ------------------------------------------------------


@pytest.mark.parametrize(
    ("duration", "expected"),
    [(0, "OK"), (300, "OK"), (301, "WARNING"), (600, "WARNING"), (601, "ERROR")],
)
def test_severity_thresholds_are_exclusive(duration, expected):
    assert classify_severity(duration, SeverityThresholds()) == expected


def test_thresholds_must_be_ordered():
    with pytest.raises(ValidationError):
        SeverityThresholds(warning_seconds=600, error_seconds=300)


# --- end to end ------------------------------------------------------------


def test_analyze_header_csv():
    report = analyze(HEADER_CSV)
    assert [(c.pid, c.duration_seconds, c.severity) for c in report.completed] == [
        ("46578", 240, "OK"),
        ("12345", 720, "ERROR"),
    ]
    assert report.completed[0].description == "Job A processing"
    assert report.orphans == []
    assert report.incompletes == []
    assert len(report.entries) == 4


def test_analyze_space_delimited_lines():
    report = analyze("12:30:00 55555 START AnotherJob\n12:38:00 55555 END AnotherJob")
    [interval] = report.completed
    assert interval.pid == "55555"
    assert interval.duration_seconds == 480
    assert interval.severity == "WARNING"
    assert interval.description == "AnotherJob"


def test_analyze_midnight_wraparound():
    report = analyze("23:55:00 99999 START Night job\n00:10:00 99999 END Night job")
    [interval] = report.completed
    assert interval.duration_seconds == 900
    assert interval.severity == "ERROR"


def test_analyze_orphan_and_incomplete():
    report = analyze("10:00:00 1 END lost\n11:00:00 2 START never closed")
    assert report.completed == []
    assert [(o.pid, o.description) for o in report.orphans] == [("1", "lost")]
    assert [(i.pid, i.description) for i in report.incompletes] == [("2", "never closed")]


def test_analyze_sorts_by_start_time():
    text = "\n".join(
        [
            "13:00:00 1 START late",
            "13:01:00 1 END late",
            "09:00:00 2 START early",
            "09:01:00 2 END early",
        ]
    )
    assert [c.pid for c in analyze(text).completed] == ["2", "1"]


def test_analyze_with_custom_thresholds():
    text = "10:00:00 1 START a\n10:01:30 1 END a"
    report = analyze(text, SeverityThresholds(warning_seconds=30, error_seconds=60))
    assert report.completed[0].severity == "ERROR"


def test_analyze_is_idempotent():
    assert analyze(HEADER_CSV) == analyze(HEADER_CSV)


def test_analyze_unparseable_input_yields_empty_report():
    report = analyze("hello\nworld")
    assert report.completed == report.orphans == report.incompletes == report.entries == []


def test_summarize_report_counts_severities():
    text = HEADER_CSV + "\n12:30:00 55555 START x\n12:38:00 55555 END x\n13:00:00 6 END y"
    summary = summarize_report(analyze(text))
    assert summary.total == 3
    assert (summary.ok_count, summary.warning_count, summary.error_count) == (1, 1, 1)
    assert summary.orphan_count == 1
    assert summary.incomplete_count == 0
