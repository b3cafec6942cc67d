from __future__ import annotations

import time
from typing import Dict, Any, Optional, List

import orjson

from .hashing import chain_next
from .schemas import AuditEvent
from .settings import settings
from .storage import AuditStore


class AuditTrailAgent:
    """Hash-chained event log per job: audit.jsonl on disk plus the audit table."""

    def __init__(self, store: Optional[AuditStore] = None) -> None:
        self.store = store or AuditStore()
        self._last_hash_by_run: Dict[str, str] = {}

    def _resolve_prev_hash(self, run_id: str) -> str:
        if run_id in self._last_hash_by_run:
            return self._last_hash_by_run[run_id]
        # Recover from DB when a replayed run starts with a fresh agent
        last = self.store.last_hash(run_id)
        return last or ""

    def log_event(
        self,
        run_id: str,
        step: str,
        status: str = "ok",
        details: Optional[Dict[str, Any]] = None,
        input_digest: Optional[str] = None,
        output_digest: Optional[str] = None,
        artifact_paths: Optional[List[str]] = None,
    ) -> AuditEvent:
        ts_iso = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        ts_ns = time.perf_counter_ns()

        prev_hash = self._resolve_prev_hash(run_id)

        # Build event without event_hash first
        event_dict = {
            "run_id": run_id,
            "step": step,
            "status": status,
            "ts_iso": ts_iso,
            "ts_ns": ts_ns,
            "input_digest": input_digest,
            "output_digest": output_digest,
            "artifact_paths": artifact_paths or [],
            "details": details or {},
            "prev_event_hash": prev_hash,
        }
        event_hash = chain_next(prev_hash, event_dict)
        event_full = AuditEvent(**{**event_dict, "event_hash": event_hash})

        audit_path = settings.artifacts_dir_for(run_id) / "audit.jsonl"
        line = orjson.dumps(event_full.model_dump(), option=orjson.OPT_SORT_KEYS)
        with open(audit_path, "ab") as f:
            f.write(line + b"\n")

        self.store.append(event_full)
        self._last_hash_by_run[run_id] = event_hash
        return event_full

    def warn(self, run_id: str, step: str, details: Optional[Dict[str, Any]] = None) -> AuditEvent:
        return self.log_event(run_id, step, status="warn", details=details)

    def error(self, run_id: str, step: str, exc: BaseException, details: Optional[Dict[str, Any]] = None) -> AuditEvent:
        payload = {"error_type": type(exc).__name__, "error_message": str(exc)}
        payload.update(details or {})
        return self.log_event(run_id, step, status="error", details=payload)
