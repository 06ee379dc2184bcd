from __future__ import annotations

import logging

from logging_config import ContextualFormatter


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("services.ingestor", logging.INFO, __file__, 1, "Reading stored", (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_appends_known_context_keys() -> None:
    formatter = ContextualFormatter(fmt="%(message)s")

    rendered = formatter.format(_record(reading_id=7, consumption=1.5, row_count=3, limit=100))

    assert rendered == "Reading stored | consumption=1.5 reading_id=7"


def test_formatter_skips_missing_and_none_values() -> None:
    formatter = ContextualFormatter(fmt="%(message)s")

    assert formatter.format(_record(topic=None)) == "Reading stored"
