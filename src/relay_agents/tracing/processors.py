from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

from ..logger import logger
from .processor_interface import TracingProcessor
from .spans import Span
from .traces import Trace


class FileTraceExporter(TracingProcessor):
    """Collects the spans of each trace and, when the trace finishes, writes the trace and its
    spans to `<storage_dir>/<trace_id>.json`."""

    def __init__(self, storage_dir: str | Path = "./trace_data"):
        self.storage_dir = Path(storage_dir)
        self._lock = threading.Lock()
        self._pending: dict[str, list[dict[str, Any]]] = {}
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"FileTraceExporter initialized. Storage directory: {self.storage_dir}")

    def on_trace_start(self, trace: Trace) -> None:
        with self._lock:
            self._pending.setdefault(trace.trace_id, [])

    def on_trace_end(self, trace: Trace) -> None:
        trace_dict = trace.to_dict()
        with self._lock:
            spans = self._pending.pop(trace.trace_id, [])
        if trace_dict is None:
            return

        file_path = self.storage_dir / f"{trace.trace_id}.json"
        try:
            with open(file_path, "w", encoding="utf-8") as f:
                json.dump({**trace_dict, "spans": spans}, f, indent=2, default=str)
        except OSError as e:
            logger.error(f"FileTraceExporter: error saving trace {trace.trace_id}: {e}")
            return
        logger.debug(f"FileTraceExporter: saved trace {trace.trace_id} to {file_path}")

    def on_span_start(self, span: Span[Any]) -> None:
        pass

    def on_span_end(self, span: Span[Any]) -> None:
        span_dict = span.to_dict()
        if span_dict is None:
            return
        with self._lock:
            self._pending.setdefault(span.trace_id, []).append(span_dict)

    def shutdown(self) -> None:
        self.force_flush()

    def force_flush(self) -> None:
        with self._lock:
            dropped = len(self._pending)
            self._pending.clear()
        if dropped:
            logger.debug(f"FileTraceExporter: dropped {dropped} unfinished trace(s)")
