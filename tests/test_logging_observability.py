import json

import structlog
from structlog.contextvars import clear_contextvars

from hostdeploy.utils.logging import bind_run_context, setup_logging


def test_structured_logs_include_correlation(capsys):
    clear_contextvars()
    setup_logging("INFO", "json")
    bind_run_context("3f2a9c1d0b7e", force_clean=True)

    logger = structlog.get_logger()
    logger.info("test_event", foo="bar")
    out = capsys.readouterr().out.strip().splitlines()[-1]
    data = json.loads(out)
    assert data["event"] == "test_event"
    assert data["run_id"] == "3f2a9c1d0b7e"
    assert data["force_clean"] is True
    assert data["foo"] == "bar"
    assert data["level"] == "info"
    clear_contextvars()


def test_redaction(capsys):
    clear_contextvars()
    setup_logging("INFO", "json")
    bind_run_context(None, None)
    logger = structlog.get_logger()
    logger.info("leak_test", password="secret", token="abc", jwt_secret="s3cr3t", CF_DNS_API_TOKEN="cf")
    out = capsys.readouterr().out.strip().splitlines()[-1]
    data = json.loads(out)
    assert data["password"] == "[REDACTED]"
    assert data["token"] == "[REDACTED]"
    assert data["jwt_secret"] == "[REDACTED]"
    assert data["CF_DNS_API_TOKEN"] == "[REDACTED]"


def test_console_lines_are_tagged(capsys):
    clear_contextvars()
    setup_logging("DEBUG", "console", colors=False)
    bind_run_context("3f2a9c1d0b7e", force_clean=False)
    logger = structlog.get_logger()

    logger.info("Checking prerequisites...", step=True)
    logger.info("All prerequisites met ✓", domain="todo.example.com")
    logger.warning("Application returned HTTP 503 (may need more time)")
    logger.error("Deployment failed with exit code: 3")
    logger.debug("Running command", command="terraform state list")

    lines = capsys.readouterr().out.strip().splitlines()
    assert lines == [
        "[STEP] Checking prerequisites...",
        "[INFO] All prerequisites met ✓ domain=todo.example.com",
        "[WARN] Application returned HTTP 503 (may need more time)",
        "[ERROR] Deployment failed with exit code: 3",
        "[DEBUG] Running command command=terraform state list",
    ]
    clear_contextvars()


def test_console_colors():
    from hostdeploy.utils.logging import OperatorConsoleRenderer

    line = OperatorConsoleRenderer(colors=True)(None, None, {"event": "ok", "level": "info"})

    assert line == "\033[0;32m[INFO]\033[0m ok"


def test_level_filtering(capsys):
    clear_contextvars()
    setup_logging("WARNING", "console", colors=False)
    logger = structlog.get_logger()

    logger.info("hidden")
    logger.warning("shown")

    assert capsys.readouterr().out.strip() == "[WARN] shown"
