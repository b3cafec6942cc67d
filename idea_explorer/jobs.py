"""Job lifecycle rules: submission, state transitions and the polling view.

``apply_update`` is the single place a job record changes shape. The store
calls it for every mutation so the invariants below hold regardless of
which pipeline step (or replay of one) asked for the change:

- pending -> running -> completed | failed, and pending -> failed when the
  pipeline dies before it starts; terminal states never change again
- a terminal job carries exactly one of github_url / error
- step_durations is merged key-wise, never replaced
- notified_at is written once; later values are ignored
"""
from __future__ import annotations

from typing import Any, Dict

from .errors import ValidationFault
from .schemas import ExploreRequest, Job
from .urltools import validate_destination


ALLOWED_TRANSITIONS = {
    "pending": {"pending", "running", "failed"},
    "running": {"running", "completed", "failed"},
    "completed": {"completed"},
    "failed": {"failed"},
}

_IMMUTABLE_FIELDS = {"id", "created_at"}


def can_transition(current: str, new: str) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, set())


def apply_update(current: Job, partial: Dict[str, Any]) -> Job:
    """Merge ``partial`` into ``current`` and return the new record."""
    changes = {k: v for k, v in partial.items() if k not in _IMMUTABLE_FIELDS}

    new_status = changes.get("status", current.status)
    if not can_transition(current.status, new_status):
        raise ValidationFault(f"Illegal job transition {current.status} -> {new_status} for {current.id}")

    if "step_durations" in changes:
        merged = dict(current.step_durations)
        merged.update(changes["step_durations"] or {})
        changes["step_durations"] = merged

    if current.notified_at is not None:
        changes.pop("notified_at", None)

    data = current.model_dump()
    data.update(changes)
    updated = Job.model_validate(data)

    if updated.is_terminal and not current.is_terminal:
        if bool(updated.github_url) == bool(updated.error):
            raise ValidationFault(
                f"Job {current.id} cannot become {updated.status} without exactly one of github_url/error"
            )
    return updated


def submit(store, request: ExploreRequest) -> Job:
    """Validate a request and create its job; nothing is persisted on rejection."""
    if not request.idea or not request.idea.strip():
        raise ValidationFault("idea is required")
    if request.webhook_url is not None:
        validate_destination(request.webhook_url)
    return store.create(request)


def status_view(job: Job) -> Dict[str, Any]:
    """Polling payload: always well formed, never exposes internals."""
    view: Dict[str, Any] = {"status": job.status, "idea": job.idea, "mode": job.mode}
    if job.status == "running":
        for key in ("current_step", "current_step_label", "steps_completed", "steps_total", "step_started_at"):
            value = getattr(job, key)
            if value is not None:
                view[key] = value
    if job.step_durations:
        view["step_durations"] = dict(job.step_durations)
    if job.status == "completed" and job.github_url:
        view["github_url"] = job.github_url
    if job.status == "failed" and job.error:
        view["error"] = job.error
    if job.continue_from:
        view["continue_from"] = job.continue_from
    return view
