import logging
from pathlib import Path

from apisixsync.core.logging_setup import build_logger


def test_logger_creates_files_and_redacts(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    logger = build_logger(
        name="as",
        run_id="run123",
        action="sync",
        base_dir="logs",
        console_level="INFO",
        file_level="DEBUG",
        extra={"gateway": "http://gw:9180", "upstream": "svcA"},
    )

    logger.info("headers X-API-KEY: edd1c9f034335f136f87ad84b625c8f1")
    logger.error("password=secret-x, token: tkn999 | api_key=AKIA123")

    app_log = Path("logs/app.log")
    assert app_log.exists()

    dated_dirs = list(Path("logs").glob("20*"))
    assert dated_dirs, "dated directory not created"
    files = list(dated_dirs[0].glob("sync_run123.log"))
    assert files, "action-based log file not created"

    content = app_log.read_text(encoding="utf-8")
    assert "***REDACTED***" in content
    assert "edd1c9f034335f136f87ad84b625c8f1" not in content
    assert "secret-x" not in content and "AKIA123" not in content
    assert "upstream=svcA" in content

    action_content = files[0].read_text(encoding="utf-8")
    assert "***REDACTED***" in action_content
    assert "tkn999" not in action_content


def test_module_loggers_format_without_context(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    build_logger(name="as_mod", run_id="r7", action="export", base_dir="logs")

    logging.getLogger("as_mod.http").debug("plain-module-line")

    content = Path("logs/app.log").read_text(encoding="utf-8")
    assert "plain-module-line" in content
    assert "run=- action=-" in content


def test_rotating_file_captures_debug(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    logger = build_logger(name="as_test2", run_id="r42", action="export", base_dir="logs")
    logger.debug("debug-line-42")
    content = Path("logs/app.log").read_text(encoding="utf-8")
    assert "DEBUG" in content and "debug-line-42" in content
