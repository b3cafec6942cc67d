from __future__ import annotations

import pytest

from idea_explorer.errors import ValidationFault
from idea_explorer.jobs import apply_update, can_transition, status_view, submit
from idea_explorer.schemas import ContinueFrom, ExploreRequest, Job, NewIdea, UpdateExisting


def _job(**fields) -> Job:
    base = {"id": "abcd1234", "idea": "Pet insurance comparison", "created_at": 1_767_225_600_000}
    base.update(fields)
    return Job(**base)


def test_transitions():
    assert can_transition("pending", "running")
    assert can_transition("pending", "failed")
    assert can_transition("running", "completed")
    assert not can_transition("pending", "completed")
    assert not can_transition("completed", "failed")
    assert not can_transition("failed", "running")


def test_terminal_requires_exactly_one_outcome():
    running = _job(status="running")
    with pytest.raises(ValidationFault):
        apply_update(running, {"status": "completed"})
    with pytest.raises(ValidationFault):
        apply_update(running, {"status": "failed", "error": "x", "github_url": "https://github.com/o/r/blob/main/a.md"})

    done = apply_update(running, {"status": "completed", "github_url": "https://github.com/o/r/blob/main/a.md"})
    assert done.is_terminal
    assert done.error is None


def test_terminal_state_is_final():
    failed = _job(status="failed", error="boom")
    with pytest.raises(ValidationFault):
        apply_update(failed, {"status": "running"})
    # Bookkeeping on a terminal job is still allowed
    assert apply_update(failed, {"notified_at": 5}).notified_at == 5


def test_notified_at_is_written_once():
    job = apply_update(_job(status="failed", error="boom"), {"notified_at": 100})
    again = apply_update(job, {"notified_at": 200})
    assert again.notified_at == 100


def test_step_durations_merge():
    job = _job(status="running", step_durations={"initialize": 10})
    merged = apply_update(job, {"step_durations": {"check_existing": 20}})
    assert merged.step_durations == {"initialize": 10, "check_existing": 20}


def test_from_flags():
    assert isinstance(ExploreRequest.from_flags("x").continuation, NewIdea)
    assert isinstance(ExploreRequest.from_flags("x", update=True).continuation, UpdateExisting)
    req = ExploreRequest.from_flags("x", continue_from="prev0001", mode="exploration")
    assert req.continuation == ContinueFrom(job_id="prev0001")
    assert req.mode == "exploration"
    with pytest.raises(ValidationFault):
        ExploreRequest.from_flags("x", update=True, continue_from="prev0001")
    with pytest.raises(ValidationFault):
        ExploreRequest.from_flags("x", mode="brainstorm")


def test_submit_rejects_bad_requests_without_persisting(store):
    with pytest.raises(ValidationFault):
        submit(store, ExploreRequest(idea="   "))
    with pytest.raises(ValidationFault):
        submit(store, ExploreRequest(idea="x", webhook_url="http://169.254.169.254/latest/meta-data"))
    assert store.list().total == 0

    job = submit(store, ExploreRequest(idea="x", webhook_url="https://hooks.acme.io/cb"))
    assert store.get(job.id) is not None


def test_status_view_per_status():
    pending = _job()
    assert status_view(pending) == {"status": "pending", "idea": pending.idea, "mode": "business"}

    running = _job(
        status="running",
        current_step="generate_research",
        current_step_label="Generating research with Claude...",
        steps_completed=2,
        steps_total=5,
        step_started_at=1_767_225_601_000,
        step_durations={"initialize": 5, "check_existing": 40},
    )
    view = status_view(running)
    assert view["current_step"] == "generate_research"
    assert view["steps_completed"] == 2
    assert view["step_durations"] == {"initialize": 5, "check_existing": 40}
    assert "github_url" not in view

    done = _job(status="completed", github_url="https://github.com/o/r/blob/main/a.md")
    assert status_view(done)["github_url"] == done.github_url
    assert "current_step" not in status_view(done)

    failed = _job(status="failed", error="boom", continuation=ContinueFrom(job_id="prev0001"))
    view = status_view(failed)
    assert view["error"] == "boom"
    assert view["continue_from"] == "prev0001"
    assert "callback_secret" not in view
