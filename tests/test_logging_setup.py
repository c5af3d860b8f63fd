"""Tests for the operator log configuration."""

import io

import pytest
from loguru import logger

from logging_setup import setup_logging


@pytest.fixture
def sink():
    buffer = io.StringIO()
    yield buffer
    logger.remove()


def test_level_filters_messages(sink: io.StringIO):
    setup_logging("warning", sink=sink)

    logger.info("dropped")
    logger.warning("kept")

    output = sink.getvalue()
    assert "dropped" not in output
    assert "WARNING" in output and "kept" in output


def test_lines_carry_utc_timestamp(sink: io.StringIO):
    setup_logging("debug", sink=sink)
    logger.info("hello")

    line = sink.getvalue().splitlines()[-1]
    assert line.split(" | ")[0].endswith("Z")
    assert "Ingestion log configured (level=DEBUG)" in sink.getvalue()
