from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import pytest
import structlog

from gauntlet_orchestrator.observability.logging import (
    LoggingConfig,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

_LOGGER_NAME = "gauntlet_orchestrator"


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    yield
    shutdown_logging()
    structlog.reset_defaults()
    root = logging.getLogger(_LOGGER_NAME)
    root.propagate = True
    root.setLevel(logging.NOTSET)


def _read_events(path: Path) -> list[dict[str, object]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines if line.strip()]


def test_correlation_scope_binds_and_restores() -> None:
    assert get_correlation_context() == {}

    with correlation_scope(run_number=2, job_id="check:.:lint"):
        assert get_correlation_context() == {"run_number": 2, "job_id": "check:.:lint"}
        with correlation_scope(job_id="review:.:quality"):
            assert get_correlation_context()["job_id"] == "review:.:quality"
        assert get_correlation_context()["job_id"] == "check:.:lint"

    assert get_correlation_context() == {}


def test_correlation_scope_rejects_blank_values() -> None:
    with pytest.raises(ValueError, match="must not be empty"):
        with correlation_scope(job_id="   "):
            pass
    assert get_correlation_context() == {}


def test_default_redactor_masks_keys_and_inline_secrets() -> None:
    redacted = default_log_redactor(
        {
            "api_key": "abc",
            "nested": {"Authorization": "Bearer xyz"},
            "stderr": "login failed: token=hunter2 for sk-ant-abcdefghijklmnop",
            "count": 3,
        }
    )

    assert redacted == {
        "api_key": "***REDACTED***",
        "nested": {"Authorization": "***REDACTED***"},
        "stderr": "login failed: token=***REDACTED*** for ***REDACTED***",
        "count": 3,
    }


def test_setup_validates_config(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="queue_size"):
        setup_structured_logging(LoggingConfig(queue_size=0, log_to_stderr=False))
    with pytest.raises(ValueError, match="unsupported logging level"):
        setup_structured_logging(LoggingConfig(level="LOUD", log_to_stderr=False))
    with pytest.raises(ValueError, match="logger_name"):
        setup_structured_logging(LoggingConfig(logger_name=" ", log_to_stderr=False))


def test_structlog_events_become_json_lines(tmp_path: Path) -> None:
    log_path = tmp_path / "diagnostics" / "gauntlet.jsonl"
    handle = setup_structured_logging(
        LoggingConfig(log_path=log_path, level="INFO", log_to_stderr=False)
    )
    assert get_active_logging_handle() is handle

    log = structlog.get_logger("gauntlet_orchestrator.control_plane.controller")
    with correlation_scope(run_number=3):
        log.info("run_started", jobs=2, name="lint", token="s3cret")
    log.debug("below_threshold")
    shutdown_logging(handle)

    assert handle.is_shutdown
    assert get_active_logging_handle() is None
    events = _read_events(log_path)
    assert len(events) == 1
    event = events[0]
    assert event["event"] == "run_started"
    assert event["level"] == "INFO"
    assert event["logger"] == "gauntlet_orchestrator.control_plane.controller"
    assert event["run_number"] == 3
    assert event["fields"] == {"jobs": 2, "name_": "lint", "token": "***REDACTED***"}
    assert str(event["timestamp"]).endswith("Z")


def test_custom_redactor_runs_before_default(tmp_path: Path) -> None:
    def hide_paths(value: object) -> object:
        if isinstance(value, dict):
            return {key: "<path>" if key == "path" else item for key, item in value.items()}
        return value

    log_path = tmp_path / "gauntlet.jsonl"
    handle = setup_structured_logging(
        LoggingConfig(
            log_path=log_path,
            level=logging.WARNING,
            log_to_stderr=False,
            redactor=hide_paths,
        )
    )

    structlog.get_logger("gauntlet_orchestrator.persistence").warning(
        "artifact_unreadable", path="/tmp/x.json", password="pw"
    )
    shutdown_logging(handle)

    fields = _read_events(log_path)[0]["fields"]
    assert fields == {"path": "<path>", "password": "***REDACTED***"}


def test_setup_replaces_previous_handle(tmp_path: Path) -> None:
    first = setup_structured_logging(
        LoggingConfig(log_path=tmp_path / "a.jsonl", log_to_stderr=False)
    )
    second = setup_structured_logging(
        LoggingConfig(log_path=tmp_path / "b.jsonl", log_to_stderr=False)
    )

    assert first.is_shutdown
    assert not second.is_shutdown
    assert get_active_logging_handle() is second
