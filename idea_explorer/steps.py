from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Optional

from tenacity import RetryCallState, Retrying, stop_after_attempt, wait_fixed

from .audit import AuditTrailAgent
from .errors import StepTimeout
from .settings import StepPolicy
from .storage import StepResultStore


class StepRunner:
    """Durable step execution for one job.

    ``run`` retries ``fn`` per policy, enforces its timeout and persists the
    (JSON-serializable) result. A replay of the same job finds the stored
    result and returns it without invoking ``fn`` again.

    A timed-out attempt is abandoned, not killed: its thread may still be
    running when the next attempt starts. ``fn`` must tolerate that, or the
    step's policy must use ``timeout_s=0`` to run inline (as write_github
    does, leaning on per-request timeouts instead).
    """

    def __init__(
        self,
        job_id: str,
        results: Optional[StepResultStore] = None,
        audit: Optional[AuditTrailAgent] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.job_id = job_id
        self.results = results or StepResultStore()
        self.audit = audit
        self._sleep = sleep

    def run(self, name: str, policy: StepPolicy, fn: Callable[[], Any]) -> Any:
        found, stored = self.results.lookup(self.job_id, name)
        if found:
            if self.audit:
                self.audit.log_event(self.job_id, f"step.{name}.replayed", details={})
            return stored

        retrying = Retrying(
            stop=stop_after_attempt(policy.retry_limit + 1),
            wait=wait_fixed(policy.retry_delay_s),
            sleep=self._sleep,
            before_sleep=lambda state: self._on_retry(name, state),
            reraise=True,
        )
        result = retrying(self._call_with_timeout, name, policy.timeout_s, fn)
        self.results.save(self.job_id, name, result)
        return result

    def _call_with_timeout(self, name: str, timeout_s: float, fn: Callable[[], Any]) -> Any:
        if not timeout_s or timeout_s <= 0:
            return fn()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"step-{name}")
        try:
            future = executor.submit(fn)
            try:
                return future.result(timeout=timeout_s)
            except FutureTimeout as e:
                raise StepTimeout(name, timeout_s) from e
        finally:
            # A timed-out call keeps running in its thread; do not wait on it
            executor.shutdown(wait=False, cancel_futures=True)

    def _on_retry(self, name: str, state: RetryCallState) -> None:
        if not self.audit or state.outcome is None:
            return
        exc = state.outcome.exception()
        self.audit.warn(
            self.job_id,
            f"step.{name}.retry",
            details={
                "attempt": state.attempt_number,
                "error_type": type(exc).__name__ if exc else None,
                "error_message": str(exc) if exc else None,
            },
        )
