"""
gauntlet-orchestrator — process logging

File: src/gauntlet_orchestrator/observability/logging.py

Purpose
- Route every ``structlog.get_logger(__name__)`` event through one stdlib logger and
  write it as a JSON line (stderr and/or a file) from a background queue listener.
- Bind run-scoped correlation fields (``run_number``, ``job_id``) with structlog
  contextvars so concurrent jobs tag their own events.

Functional requirements
- Logging never blocks a job: a full queue drops the record and counts it.
- Credential-shaped keys and inline secrets (reviewer stderr, env dumps) are masked
  before anything reaches a sink.
- Gate logs under the log directory are plain text written by the gates themselves;
  they never pass through this module.
"""

from __future__ import annotations

import atexit
import json
import logging
import logging.handlers
import queue
import re
import threading
from collections.abc import Callable, Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Final

import structlog

LogRedactor = Callable[[Any], Any]

ROOT_LOGGER_NAME: Final[str] = "gauntlet_orchestrator"
CORRELATION_KEYS: Final[tuple[str, ...]] = ("run_number", "job_id")
REDACTED: Final[str] = "***REDACTED***"

_SECRET_KEY_RE: Final[re.Pattern[str]] = re.compile(
    r"(?i)(secret|token|passw(or)?d|api_?key|authorization|credential|cookie|private_key)"
)
_INLINE_SECRET_RES: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (
        re.compile(r"(?i)\b(api[_-]?key|token|password|secret)(\s*[:=]\s*)[^\s,;]+"),
        rf"\1\2{REDACTED}",
    ),
    (re.compile(r"(?i)\bbearer\s+[\w.~+/-]+=*"), f"Bearer {REDACTED}"),
    (re.compile(r"\b(?:sk-ant-[\w-]{12,}|sk-[A-Za-z0-9]{12,}|AIza[\w-]{30,})"), REDACTED),
)

# Attributes every LogRecord carries; anything else on a record is an event field.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}

_active_lock = threading.Lock()
_active: LoggingHandle | None = None
_atexit_registered = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Where and how loudly process logs are written.

    ``log_path`` of ``None`` keeps JSON lines on stderr only.
    """

    log_path: Path | str | None = None
    level: int | str = "WARNING"
    log_to_stderr: bool = True
    redactor: LogRedactor | None = None
    logger_name: str = ROOT_LOGGER_NAME
    queue_size: int = 4096


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    def __init__(self, log_queue: queue.Queue[Any]) -> None:
        super().__init__(log_queue)
        self.dropped = 0

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            self.dropped += 1


class JsonLinesFormatter(logging.Formatter):
    """One JSON object per record; correlation keys are lifted to the top level."""

    def __init__(self, redactor: LogRedactor) -> None:
        super().__init__()
        self._redactor = redactor

    def format(self, record: logging.LogRecord) -> str:
        fields = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
        }
        line: dict[str, Any] = {
            "timestamp": _utc_iso(record.created),
            "level": record.levelname,
            "logger": record.name,
            "event": self._redactor(record.getMessage()),
        }
        for key in CORRELATION_KEYS:
            if key in fields:
                line[key] = fields.pop(key)
        if fields:
            line["fields"] = self._redactor(_jsonable(fields))
        if record.exc_info:
            line["exception"] = self._redactor(self.formatException(record.exc_info))
        return json.dumps(line, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class LoggingHandle:
    """An active logging setup; ``shutdown`` drains the queue and closes the sinks."""

    def __init__(
        self,
        logger: logging.Logger,
        queue_handler: _DroppingQueueHandler,
        listener: logging.handlers.QueueListener,
        sinks: tuple[logging.Handler, ...],
        log_path: Path | None,
    ) -> None:
        self.logger = logger
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._listener = listener
        self._sinks = sinks
        self._lock = threading.Lock()
        self._shutdown = False

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def shutdown(self) -> None:
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
            # QueueListener.stop() flushes everything already enqueued.
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.close()


def setup_structured_logging(config: LoggingConfig) -> LoggingHandle:
    """Install JSON-lines sinks behind a queue and point structlog at them."""

    global _active, _atexit_registered
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    if not config.logger_name.strip():
        raise ValueError("logger_name must not be empty")
    level = _level(config.level)

    shutdown_logging()

    formatter = JsonLinesFormatter(_compose_redactor(config.redactor))
    sinks: list[logging.Handler] = []
    log_path = Path(config.log_path) if config.log_path is not None else None
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        sinks.append(logging.FileHandler(log_path, encoding="utf-8"))
    if config.log_to_stderr:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setFormatter(formatter)

    logger = logging.getLogger(config.logger_name.strip())
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False

    log_queue: queue.Queue[Any] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _DroppingQueueHandler(log_queue)
    listener = logging.handlers.QueueListener(log_queue, *sinks)
    listener.start()
    logger.addHandler(queue_handler)
    configure_structlog()

    handle = LoggingHandle(logger, queue_handler, listener, tuple(sinks), log_path)
    with _active_lock:
        _active = handle
        if not _atexit_registered:
            atexit.register(shutdown_logging)
            _atexit_registered = True
    return handle


def configure_structlog() -> None:
    """Send structlog events, with bound correlation fields, into stdlib logging."""

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            _rename_reserved_keys,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def shutdown_logging(handle: LoggingHandle | None = None) -> None:
    global _active
    with _active_lock:
        target = handle if handle is not None else _active
        if target is None:
            return
        if target is _active:
            _active = None
    target.shutdown()


def get_active_logging_handle() -> LoggingHandle | None:
    with _active_lock:
        return _active


@contextmanager
def correlation_scope(**fields: str | int) -> Iterator[None]:
    """Tag every event logged inside the block (including from child tasks)."""

    for key, value in fields.items():
        if not str(value).strip():
            raise ValueError(f"correlation value for {key!r} must not be empty")
    with structlog.contextvars.bound_contextvars(**fields):
        yield


def get_correlation_context() -> dict[str, Any]:
    bound = structlog.contextvars.get_contextvars()
    return {key: bound[key] for key in CORRELATION_KEYS if key in bound}


def default_log_redactor(value: Any) -> Any:
    """Mask values under secret-looking keys and secret-looking substrings anywhere."""

    return _redact(value, None)


def _redact(value: Any, key: str | None) -> Any:
    if key is not None and _SECRET_KEY_RE.search(key):
        return REDACTED
    if isinstance(value, str):
        for pattern, replacement in _INLINE_SECRET_RES:
            value = pattern.sub(replacement, value)
        return value
    if isinstance(value, Mapping):
        return {name: _redact(item, str(name)) for name, item in value.items()}
    if isinstance(value, list):
        return [_redact(item, None) for item in value]
    return value


def _compose_redactor(custom: LogRedactor | None) -> LogRedactor:
    if custom is None:
        return default_log_redactor
    return lambda value: default_log_redactor(custom(value))


def _rename_reserved_keys(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    # stdlib refuses ``extra`` keys that collide with LogRecord attributes.
    for key in [key for key in event_dict if key in _RECORD_ATTRIBUTES]:
        if key not in {"exc_info", "stack_info"}:
            event_dict[f"{key}_"] = event_dict.pop(key)
    return event_dict


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_jsonable(item) for item in value), key=repr)
    if isinstance(value, Path):
        return value.as_posix()
    return repr(value)


def _utc_iso(epoch: float) -> str:
    stamp = datetime.fromtimestamp(epoch, tz=UTC).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


def _level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(value.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unsupported logging level {value!r}")
    return resolved


__all__ = [
    "CORRELATION_KEYS",
    "JsonLinesFormatter",
    "LogRedactor",
    "LoggingConfig",
    "LoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "setup_structured_logging",
    "shutdown_logging",
]
