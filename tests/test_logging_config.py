"""
OrgLens - Logging Configuration Tests
"""

import contextvars
import logging
import sys
import threading
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from orglens.logging_config import (
    ColoredFormatter,
    current_run_id,
    get_logger,
    run_context,
    setup_logging,
)


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    saved, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        handler.close()
        root.removeHandler(handler)
    for handler in saved:
        root.addHandler(handler)
    root.setLevel(level)


def test_colored_formatter_does_not_mutate_record():
    record = logging.LogRecord('orglens', logging.WARNING, __file__, 1, 'careful', None, None)
    output = ColoredFormatter('%(levelname)s [%(run_id)s] %(message)s').format(record)

    assert 'WARNING' in output
    assert '[-]' in output
    assert output.endswith('careful')
    assert record.levelname == 'WARNING'


def test_setup_logging_writes_file(tmp_path, root_logger):
    log_file = tmp_path / 'logs' / 'orglens.log'
    root = setup_logging(log_file=str(log_file), log_level='DEBUG')
    get_logger('orglens.test').info('cycle started')
    for handler in root.handlers:
        handler.flush()

    assert root.level == logging.DEBUG
    assert len(root.handlers) == 2
    assert 'cycle started' in log_file.read_text(encoding='utf-8')


def test_log_level_from_environment(monkeypatch, root_logger):
    monkeypatch.setenv('ORGLENS_LOG_LEVEL', 'warning')
    assert setup_logging().level == logging.WARNING

    with pytest.raises(ValueError):
        setup_logging(log_level='LOUD')


def test_run_id_is_stamped_on_records(tmp_path, root_logger):
    log_file = tmp_path / 'orglens.log'
    root = setup_logging(log_file=str(log_file), log_level='INFO')
    logger = get_logger('orglens.test')

    logger.info('outside')
    with run_context('0123456789abcdef') as run_id:
        assert current_run_id() == run_id
        logger.info('inside')

        # Worker threads keep the tag only when given a copy of the context
        context = contextvars.copy_context()
        worker = threading.Thread(target=context.run, args=(logger.info, 'in worker'))
        worker.start()
        worker.join()
    assert current_run_id() is None

    for handler in root.handlers:
        handler.flush()
    lines = log_file.read_text(encoding='utf-8').splitlines()

    assert '[- ' in lines[0] and lines[0].endswith('outside')
    assert '[01234567 ' in lines[1] and lines[1].endswith('inside')
    assert '[01234567 ' in lines[2] and lines[2].endswith('in worker')
