import io
import logging

import structlog

from smart_budget.logging_setup import _parse_level, configure_logging


def test_parse_level_accepts_names_and_numbers():
    assert _parse_level('debug') == logging.DEBUG
    assert _parse_level('30') == logging.WARNING
    assert _parse_level(logging.ERROR) == logging.ERROR
    assert _parse_level('not-a-level') == logging.INFO


def test_configure_logging_renders_key_value_events():
    stream = io.StringIO()
    try:
        configure_logging('INFO', stream=stream, force=True)
        logger = structlog.get_logger()
        logger.debug('hidden_event')
        logger.info('budget_synthesized', user_id='u1', total=900)
    finally:
        structlog.reset_defaults()

    output = stream.getvalue()
    assert 'budget_synthesized' in output
    assert 'user_id=u1' in output
    assert 'hidden_event' not in output
