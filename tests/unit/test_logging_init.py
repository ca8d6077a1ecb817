from __future__ import annotations

import logging

from clientdesk.logging.init import LOGGER_NAME, get_logger, log_summary, setup_logging


def test_setup_logging_creates_single_stdout_handler():
    logger = setup_logging()
    assert logger.name == LOGGER_NAME
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    assert logger.propagate is False
    # idempotent
    assert setup_logging() is logger
    assert len(logger.handlers) == 1


def test_labeled_prefixes(capsys):
    setup_logging()
    log = logging.getLogger("clientdesk.services.importer")
    log.info("Test info message")
    log.warning("Test warning message")
    log.error("Test error message")
    log_summary("rows=1 created=1")
    lines = capsys.readouterr().out.strip().splitlines()
    assert lines == [
        "INFO Test info message",
        "WARN Test warning message",
        "ERROR Test error message",
        "SUMMARY rows=1 created=1",
    ]


def test_debug_mode(capsys):
    setup_logging(debug=True)
    logging.getLogger("clientdesk.grid.editor").debug("details")
    assert capsys.readouterr().out.strip() == "DEBUG details"


def test_debug_hidden_by_default(capsys):
    get_logger()
    logging.getLogger("clientdesk").debug("hidden")
    assert capsys.readouterr().out == ""
