from __future__ import annotations

import pytest

from docrag.metrics.observability import (
    TimedSection,
    bind_correlation_id,
    clear_correlation_id,
    configure_logging,
    get_correlation_id,
    get_logger,
)


def test_timed_section_reports_elapsed_even_on_error():
    observed: list[float] = []
    with pytest.raises(RuntimeError):
        with TimedSection(observed.append) as timer:
            raise RuntimeError("boom")
    assert observed == [timer.elapsed]
    assert timer.elapsed >= 0.0


def test_correlation_id_round_trip():
    bind_correlation_id("req-123")
    assert get_correlation_id() == "req-123"
    clear_correlation_id()
    assert get_correlation_id() == "-"


def test_logger_accepts_level_names(caplog):
    configure_logging("warning", json_logs=True)
    try:
        get_logger("test").info("hidden.event")
        get_logger("test").warning("shown.event", detail="x")
        assert "shown.event" in caplog.text
        assert "hidden.event" not in caplog.text
        assert '"service": "docrag"' in caplog.text
    finally:
        configure_logging("INFO")
