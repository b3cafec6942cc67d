"""Outbound job-outcome webhooks.

The body is serialized once and those exact bytes are both signed and
sent. Delivery uses a fixed backoff schedule (1s, 5s, 30s by default) over
at most three attempts; a 3xx is a failed attempt because following it
would hand the payload and signature to a host nobody validated.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import requests
from tenacity import RetryCallState, Retrying, retry_if_result, stop_after_attempt, wait_chain, wait_fixed

from .audit import AuditTrailAgent
from .errors import DeliveryFault
from .hashing import canonical_json, sign_body
from .schemas import DeliveryResult, Job, WebhookFailurePayload, WebhookPayload, WebhookSuccessPayload
from .urltools import host
from .settings import settings


@dataclass
class _Attempt:
    ok: bool
    status: Optional[int]


def build_payload(job: Job, raw_url_for: Callable[[str], str], branch: str) -> WebhookPayload:
    durations = dict(job.step_durations) if job.step_durations else None
    if job.status == "completed":
        github_url = job.github_url or ""
        marker = f"/blob/{branch}/"
        output_path = github_url.split(marker, 1)[1] if marker in github_url else ""
        return WebhookSuccessPayload(
            job_id=job.id,
            idea=job.idea,
            github_url=github_url,
            github_raw_url=raw_url_for(output_path) if output_path else "",
            step_durations=durations,
        )
    return WebhookFailurePayload(
        job_id=job.id,
        idea=job.idea,
        error=job.error or "Unknown error",
        step_durations=durations,
    )


def encode_payload(payload: WebhookPayload) -> bytes:
    return canonical_json(payload.model_dump(exclude_none=True))


class WebhookNotifier:
    def __init__(
        self,
        delays_s: Optional[List[float]] = None,
        max_attempts: Optional[int] = None,
        timeout_s: Optional[float] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        audit: Optional[AuditTrailAgent] = None,
    ) -> None:
        cfg = settings.webhook
        self.delays_s = list(delays_s if delays_s is not None else cfg.get("delays_s", [1, 5, 30]))
        self.max_attempts = int(max_attempts if max_attempts is not None else cfg.get("max_attempts", 3))
        self.timeout_s = timeout_s if timeout_s is not None else cfg.get("request_timeout_s", 10)
        self.session = session or requests.Session()
        self._sleep = sleep
        self.audit = audit

    def send(self, job: Job, payload: WebhookPayload) -> DeliveryResult:
        """Deliver ``payload`` to the job's webhook. Never raises."""
        if not job.webhook_url:
            return DeliveryResult(success=True, attempts=0)

        body = encode_payload(payload)
        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if job.callback_secret:
            headers["X-Signature"] = sign_body(job.callback_secret, body)

        attempts: List[_Attempt] = []

        def _attempt() -> _Attempt:
            number = len(attempts) + 1
            try:
                resp = self.session.post(
                    job.webhook_url, data=body, headers=headers, timeout=self.timeout_s, allow_redirects=False
                )
                result = _Attempt(ok=200 <= resp.status_code < 300, status=resp.status_code)
            except requests.RequestException as e:
                if self.audit:
                    self.audit.error(job.id, f"webhook_attempt_{number}", e)
                result = _Attempt(ok=False, status=None)
            attempts.append(result)
            if self.audit:
                self.audit.log_event(
                    job.id,
                    "webhook_attempt",
                    status="ok" if result.ok else "warn",
                    details={"attempt": number, "host": host(job.webhook_url), "status_code": result.status},
                )
            return result

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_chain(*[wait_fixed(d) for d in self.delays_s]),
            retry=retry_if_result(lambda r: not r.ok),
            sleep=self._sleep,
            retry_error_callback=_last_result,
        )
        final = retrying(_attempt)
        return DeliveryResult(success=final.ok, attempts=len(attempts), status_code=final.status)

    def send_or_raise(self, job: Job, payload: WebhookPayload) -> DeliveryResult:
        """Like ``send`` but raise DeliveryFault when every attempt failed."""
        result = self.send(job, payload)
        if not result.success:
            raise DeliveryFault(job.webhook_url or "", result.attempts, result.status_code)
        return result


def _last_result(state: RetryCallState) -> _Attempt:
    return state.outcome.result()
