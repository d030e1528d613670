import logging

import pytest

from services import logging_setup


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    logging_setup._CONFIGURED = False
    logging_setup._RECENT_HANDLER = None


def test_configure_logging_writes_file_and_buffer(tmp_path, restore_root_logger):
    log_path = tmp_path / "logs" / "app.log"
    config = tmp_path / "config.yaml"
    config.write_text(
        f"logging:\n  level: DEBUG\n  path: {log_path.as_posix()}\n  buffer_lines: 2\n",
        encoding="utf-8",
    )
    handler = logging_setup.configure_logging(config, force=True)

    logger = logging.getLogger("services.recompute")
    logger.info("first")
    logger.info("second")
    logger.debug("third")

    lines = logging_setup.recent_log_lines()
    assert len(lines) == 2
    assert lines[-1].endswith("services.recompute: third")
    assert log_path.exists()
    assert logging_setup.configure_logging(config) is handler


def test_recent_log_lines_empty_before_configuration(restore_root_logger):
    logging_setup._RECENT_HANDLER = None
    assert logging_setup.recent_log_lines() == ()
