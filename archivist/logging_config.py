"""
Structured JSON logging for retention runs.

Provides structured logging with trace IDs for correlating every log line of a
scheduler pass, plus context managers for per-policy stages and blob storage
operations.
"""

import json
import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime

# Context variables for trace correlation
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)
stage_var: ContextVar[str | None] = ContextVar("stage", default=None)
tenant_var: ContextVar[str | None] = ContextVar("tenant_id", default=None)

# Extra record attributes copied into the JSON payload
EXTRA_FIELDS = (
    "event",
    "duration_ms",
    "policy_id",
    "archive_id",
    "data_type",
    "category",
    "records_processed",
    "records_archived",
    "records_deleted",
    "records_restored",
    "operation",
    "key",
    "size_bytes",
    "integrity_score",
)

# Third-party loggers held at WARNING
NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "sqlalchemy")


# -----------------------------------------------------------------------------
# JSON Formatter
# -----------------------------------------------------------------------------


class JSONFormatter(logging.Formatter):
    """
    Format log records as single-line JSON.

    Output format:
    {"timestamp": "...", "level": "INFO", "message": "...", "trace_id": "...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        trace_id = trace_id_var.get()
        if trace_id:
            log_data["trace_id"] = trace_id

        stage = stage_var.get()
        if stage:
            log_data["stage"] = stage

        tenant_id = tenant_var.get()
        if tenant_id:
            log_data["tenant_id"] = tenant_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data, default=str)


def configure_logging(json_format: bool = True, level: str = "INFO") -> None:
    """
    Install a single stdout handler on the root logger.

    Called once by the process that hosts the scheduler (LOG_JSON, LOG_LEVEL).
    Library code never calls this.
    """
    numeric_level = getattr(logging, level.upper())
    formatter = JSONFormatter() if json_format else logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)


# -----------------------------------------------------------------------------
# Context Managers
# -----------------------------------------------------------------------------


@contextmanager
def log_stage(stage: str, trace_id: str | None = None, tenant_id: str | None = None, **fields):
    """
    Context manager for stage-level logging.

    Logs stage start and end with duration. Yields a dict the caller can fill
    with counters that are attached to the completion record.

    Usage:
        with log_stage("policy_run", trace_id=trace_id, tenant_id=policy.tenant_id) as metrics:
            ...
            metrics["records_deleted"] = deleted
    """
    trace_token = trace_id_var.set(trace_id) if trace_id else None
    tenant_token = tenant_var.set(tenant_id) if tenant_id else None
    stage_token = stage_var.set(stage)

    start_time = time.time()
    logger = logging.getLogger("archivist.stage")
    metrics: dict = {}

    logger.info(f"Stage {stage} started", extra={"event": "stage_start", **fields})

    try:
        yield metrics
        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Stage {stage} completed",
            extra={"event": "stage_complete", "duration_ms": duration_ms, **fields, **metrics},
        )
    except Exception as e:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.error(
            f"Stage {stage} failed: {e}",
            extra={"event": "stage_failed", "duration_ms": duration_ms, **fields},
            exc_info=True,
        )
        raise
    finally:
        stage_var.reset(stage_token)
        if tenant_token is not None:
            tenant_var.reset(tenant_token)
        if trace_token is not None:
            trace_id_var.reset(trace_token)


@contextmanager
def log_storage_operation(provider: str, operation: str, key: str):
    """
    Context manager for blob storage instrumentation.

    Usage:
        with log_storage_operation("local", "write", key) as metrics:
            path.write_bytes(blob)
            metrics["size_bytes"] = len(blob)
    """
    start_time = time.time()
    logger = logging.getLogger("archivist.storage")
    metrics: dict = {"size_bytes": 0}

    try:
        yield metrics

        duration_ms = int((time.time() - start_time) * 1000)
        logger.debug(
            f"{provider} {operation} completed: {key} ({metrics['size_bytes']} bytes, {duration_ms}ms)",
            extra={
                "event": f"storage_{operation}_complete",
                "operation": operation,
                "key": key,
                "duration_ms": duration_ms,
                "size_bytes": metrics["size_bytes"],
            },
        )
    except Exception as e:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.error(
            f"{provider} {operation} failed: {key} - {e}",
            extra={
                "event": f"storage_{operation}_failed",
                "operation": operation,
                "key": key,
                "duration_ms": duration_ms,
            },
        )
        raise
