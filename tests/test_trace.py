# tests/test_trace.py
import re
from frame_grabber.trace import LogTrace


def test_trace_appends_in_order_with_timestamps():
    trace = LogTrace()
    trace("first")
    trace("second")

    entries = trace.entries
    assert len(trace) == 2
    assert entries[0].endswith("first")
    assert entries[1].endswith("second")
    assert re.match(r"^\[\d{2}:\d{2}:\d{2}\.\d{3}\] first$", entries[0])


def test_entries_is_a_copy():
    trace = LogTrace()
    trace("only")
    trace.entries.append("tampered")
    assert len(trace) == 1
