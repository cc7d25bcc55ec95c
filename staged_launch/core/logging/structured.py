"""JSON log output for the launch service.

Every record becomes one JSON object per line. Records emitted while a
per-feature operation runs carry that feature's key, so a single launch
can be followed through controller, scheduler and alert logs alike.
"""

from __future__ import annotations

import json
import logging
import sys
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

feature_key_var: ContextVar[Optional[str]] = ContextVar("feature_key", default=None)

_PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class StructuredFormatter(logging.Formatter):
    """Render log records as single-line JSON documents."""

    def __init__(
        self,
        service_name: str = "staged-launch",
        environment: str = "production",
        include_stack_trace: bool = True,
    ):
        super().__init__()
        self._static = {"service": service_name, "environment": environment}
        self.include_stack_trace = include_stack_trace

    def _exception_block(self, exc_info) -> Dict[str, Any]:
        exc_type, exc_value, _ = exc_info
        block: Dict[str, Any] = {
            "type": getattr(exc_type, "__name__", None),
            "message": None if exc_value is None else str(exc_value),
        }
        if self.include_stack_trace:
            block["stacktrace"] = traceback.format_exception(*exc_info)
        return block

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: Dict[str, Any] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **self._static,
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        feature_key = feature_key_var.get()
        if feature_key:
            payload["feature_key"] = feature_key

        extra = getattr(record, "extra_fields", None)
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self._exception_block(record.exc_info)

        return json.dumps(payload, default=str)


def setup_structured_logging(
    service_name: str = "staged-launch",
    environment: str = "production",
    level: int | str = logging.INFO,
    json_output: bool = True,
) -> None:
    """Route the root logger to stdout, as JSON unless ``json_output`` is off."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        StructuredFormatter(service_name=service_name, environment=environment)
        if json_output
        else logging.Formatter(_PLAIN_FORMAT)
    )

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)


@contextmanager
def feature_context(feature_key: str) -> Iterator[None]:
    """Attach ``feature_key`` to every record logged inside the block."""
    token = feature_key_var.set(feature_key)
    try:
        yield
    finally:
        feature_key_var.reset(token)
