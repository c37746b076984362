"""Tests for log setup and structured fields."""

import json
import logging

import pytest

from tierdeploy.utils.logging import LogContext, get_logger, setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_each_invocation_gets_its_own_file(tmp_path):
    first = setup_logging('info', str(tmp_path))
    second = setup_logging('info', str(tmp_path))

    assert first != second
    assert first.parent == tmp_path


def test_context_fields_reach_the_file(tmp_path):
    log_file = setup_logging('warning', str(tmp_path))
    logger = get_logger('tierdeploy.test')

    with LogContext(logger, phase='infrastructure'):
        with LogContext(logger, resource_id='my-vm'):
            logger.info('Creating instance')
        logger.info('Outside resource')

    for handler in logging.getLogger().handlers:
        handler.flush()
    entries = [json.loads(line) for line in log_file.read_text().splitlines()]
    created = next(e for e in entries if e['message'] == 'Creating instance')
    outside = next(e for e in entries if e['message'] == 'Outside resource')

    assert created['phase'] == 'infrastructure'
    assert created['resource_id'] == 'my-vm'
    assert outside['phase'] == 'infrastructure'
    assert 'resource_id' not in outside
