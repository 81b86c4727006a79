import logging
import os
import sys

from evalplanner.utils import configure_logging, log_event


def test_configure_logging_idempotent(tmp_path, monkeypatch):
    log_file = tmp_path / "app.log"
    monkeypatch.setenv("EP_LOG_LEVEL", "INFO")
    monkeypatch.setenv("EP_LOG_FILE", str(log_file))

    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level
    try:
        root.handlers = []
        configure_logging("evalplanner.worker")
        configure_logging("evalplanner.worker")

        stream_handlers = [
            handler
            for handler in root.handlers
            if isinstance(handler, logging.StreamHandler)
            and not isinstance(handler, logging.FileHandler)
        ]
        file_handlers = [
            handler for handler in root.handlers if isinstance(handler, logging.FileHandler)
        ]

        assert len(stream_handlers) == 1
        assert stream_handlers[0].stream is sys.stdout
        assert len(file_handlers) == 1
        assert os.path.abspath(file_handlers[0].baseFilename) == os.path.abspath(
            str(log_file)
        )
    finally:
        for handler in root.handlers:
            if isinstance(handler, logging.FileHandler):
                handler.close()
        root.handlers = original_handlers
        root.setLevel(original_level)


def test_log_level_overrides(monkeypatch):
    monkeypatch.setenv("EP_LOG_LEVELS", "evalplanner.llm=DEBUG, evalplanner.sweeper=warning")
    llm_logger = logging.getLogger("evalplanner.llm")
    sweeper_logger = logging.getLogger("evalplanner.sweeper")
    original = (llm_logger.level, sweeper_logger.level)
    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level
    try:
        configure_logging("evalplanner.cli")
        assert llm_logger.level == logging.DEBUG
        assert sweeper_logger.level == logging.WARNING
    finally:
        root.handlers = original_handlers
        root.setLevel(original_level)
        llm_logger.setLevel(original[0])
        sweeper_logger.setLevel(original[1])


def test_log_event_format(caplog):
    logger = logging.getLogger("evalplanner.test")
    with caplog.at_level(logging.INFO, logger="evalplanner.test"):
        log_event(logger, logging.INFO, "job_enqueued", job_id=7, job_type="prompt1")

    assert "event=job_enqueued job_id=7 job_type=prompt1" in caplog.text
