from __future__ import annotations

import datetime as _dt
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .audit import AuditTrailAgent
from .errors import IdeaExplorerError, NotFound
from .exploration_log import LOG_FILENAME, merge_log, new_log
from .github_client import GitHubClient
from .llm_client import GenerationClient, redact_hashes
from .normalize import date_prefix, generate_slug, select_latest_match
from .prompts import build_system_prompt, build_user_prompt
from .schemas import DeliveryResult, ExplorationLogEntry, Job, TokenUsage
from .settings import StepPolicy, settings
from .steps import StepRunner
from .storage import JobStore, StepResultStore
from .webhook import WebhookNotifier, build_payload


@dataclass(frozen=True)
class StepDef:
    name: str
    label: str


WORKFLOW_STEPS = (
    StepDef("initialize", "Initializing job..."),
    StepDef("check_existing", "Checking for existing research..."),
    StepDef("generate_research", "Generating research with Claude..."),
    StepDef("write_github", "Writing results to GitHub..."),
    StepDef("notify", "Sending completion notification..."),
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _iso(ms: int) -> str:
    return _dt.datetime.fromtimestamp(ms / 1000, tz=_dt.timezone.utc).isoformat()


class ExplorationWorkflow:
    """Runs the five-step pipeline for one job.

    Every collaborator is passed in; the content store client in particular
    is built per run so tests can swap in fakes.
    """

    def __init__(
        self,
        store: JobStore,
        content: GitHubClient,
        generator_for: Callable[[str], GenerationClient] = GenerationClient,
        notifier: Optional[WebhookNotifier] = None,
        step_results: Optional[StepResultStore] = None,
        audit: Optional[AuditTrailAgent] = None,
        policies: Optional[Dict[str, StepPolicy]] = None,
        ideas_dir: Optional[str] = None,
        clock: Callable[[], int] = _now_ms,
        today: Optional[Callable[[], _dt.date]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.content = content
        self.generator_for = generator_for
        self.audit = audit or AuditTrailAgent()
        self.notifier = notifier or WebhookNotifier(audit=self.audit)
        self.step_results = step_results or StepResultStore(store.engine)
        self.policies = policies or {}
        self.ideas_dir = ideas_dir or settings.github.get("ideas_dir", "ideas")
        self.clock = clock
        self.today = today or _dt.date.today
        self.sleep = sleep

    def policy(self, name: str) -> StepPolicy:
        return self.policies.get(name) or settings.step_policy(name)

    # --- Pipeline ---

    def run(self, job_id: str) -> Job:
        job = self.store.get(job_id)
        if job is None:
            raise NotFound(job_id)
        if job.is_terminal:
            self.audit.log_event(
                job_id, "job_already_terminal", details={"status": job.status, "notified": job.notified_at is not None}
            )
            if job.notified_at is None:
                # Crashed between marking the outcome and delivering it
                self.complete_and_notify(job_id, job.status, github_url=job.github_url, error=job.error)
                return self.store.get(job_id) or job
            return job

        job_start = self.clock()
        slug = generate_slug(job.idea)
        prefix = date_prefix(self.today())
        runner = StepRunner(job_id, self.step_results, audit=self.audit, sleep=self.sleep)
        steps = [s.name for s in WORKFLOW_STEPS]

        try:
            step_start = self.clock()
            self._progress(job_id, 0)
            runner.run(steps[0], self.policy(steps[0]), lambda: self._initialize(job))

            self._progress(job_id, 1, step_start)
            step_start = self.clock()
            existing = runner.run(steps[1], self.policy(steps[1]), lambda: self._check_existing(job, slug))

            self._progress(job_id, 2, step_start)
            step_start = self.clock()
            generated = runner.run(
                steps[2], self.policy(steps[2]), lambda: self._generate(job, existing, prefix)
            )

            self._progress(job_id, 3, step_start)
            step_start = self.clock()
            written = runner.run(
                steps[3],
                self.policy(steps[3]),
                lambda: self._write(job, slug, prefix, existing, generated, job_start),
            )

            self._progress(job_id, 4, step_start)
            step_start = self.clock()
            runner.run(
                steps[4],
                self.policy(steps[4]),
                lambda: _dump(self.complete_and_notify(job_id, "completed", github_url=written["github_url"])),
            )
            self._record_duration(job_id, steps[4], step_start)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            self.audit.error(job_id, "exploration_failed", exc)
            try:
                self.complete_and_notify(job_id, "failed", error=message)
            except Exception as notify_exc:
                self.audit.error(job_id, "complete_job_failed", notify_exc)
            raise

        return self.store.get(job_id) or job

    def complete_and_notify(
        self,
        job_id: str,
        status: str,
        github_url: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[DeliveryResult]:
        """Mark the job terminal, deliver the webhook, set notified_at once.

        Returns None when a previous invocation already notified.
        """
        job = self.store.get(job_id)
        if job is None:
            raise NotFound(job_id)
        if job.notified_at is not None:
            self.audit.log_event(job_id, "webhook_already_sent", details={"notified_at": job.notified_at})
            return None

        if job.is_terminal:
            # A replay after the status was written; the stored outcome stands
            updated = job
        else:
            partial: Dict[str, Any] = {"status": status}
            if github_url:
                partial["github_url"] = github_url
            if error:
                partial["error"] = error
            updated = self.store.update(job_id, partial, known=job)

        self.audit.log_event(
            job_id,
            "job_complete",
            status="ok" if updated.status == "completed" else "error",
            details={"status": updated.status, "total_duration_ms": self.clock() - updated.created_at},
        )

        payload = build_payload(updated, self.content.raw_url, self.content.branch)
        delivery = self.notifier.send(updated, payload)
        if not delivery.success:
            self.audit.warn(
                job_id,
                "webhook_delivery_failed",
                details={"attempts": delivery.attempts, "last_status": delivery.status_code},
            )

        self.store.update(job_id, {"notified_at": self.clock()}, known=updated)
        return delivery

    # --- Steps ---

    def _initialize(self, job: Job) -> None:
        self.store.update(job.id, {"status": "running"})
        self.audit.log_event(
            job.id, "job_started", details={"mode": job.mode, "model": job.model, "cfg_hash": settings.cfg_hash}
        )

    def _check_existing(self, job: Job, slug: str) -> Dict[str, Any]:
        entries = self.content.list_directory(self.ideas_dir)
        result: Dict[str, Any] = {
            "existing_research_list": [e.name for e in entries if e.type == "dir"],
            "existing_dir_path": None,
            "existing_content": None,
            "existing_sha": None,
            "previous_research": None,
        }

        if job.update:
            match = select_latest_match(entries, slug)
            if match is not None:
                result["existing_dir_path"] = match.path
                research_path = f"{match.path}/research.md"
                found = self.content.get_file(research_path)
                if found is not None:
                    result["existing_content"] = found.content
                    result["existing_sha"] = found.sha
                    self.audit.log_event(job.id, "existing_research_found", details={"path": research_path})
        elif job.continue_from:
            result["previous_research"] = self._previous_research(job)

        self.audit.log_event(
            job.id,
            "check_existing_complete",
            details={
                "has_existing": bool(result["existing_content"]),
                "existing_count": len(result["existing_research_list"]),
            },
        )
        return result

    def _previous_research(self, job: Job) -> Optional[str]:
        prior = self.store.get(job.continue_from)
        marker = f"/blob/{self.content.branch}/"
        if prior is None or prior.status != "completed" or not prior.github_url or marker not in prior.github_url:
            # Not an error: continue without prior context
            self.audit.log_event(
                job.id,
                "continue_from_unavailable",
                details={"continue_from": job.continue_from, "status": prior.status if prior else None},
            )
            return None
        path = prior.github_url.split(marker, 1)[1]
        found = self.content.get_file(path)
        return found.content if found is not None else None

    def _generate(self, job: Job, existing: Dict[str, Any], prefix: str) -> Dict[str, Any]:
        self.audit.log_event(job.id, "claude_started", details={"model": job.model})
        system_prompt = build_system_prompt(job.mode)
        user_prompt = build_user_prompt(
            idea=job.idea,
            mode=job.mode,
            model=job.model,
            date_prefix=prefix,
            job_id=job.id,
            context=job.context,
            existing_content=existing.get("existing_content"),
            previous_research=existing.get("previous_research"),
            existing_research_list=existing.get("existing_research_list"),
        )
        result = self.generator_for(job.model).generate(
            idea=job.idea,
            mode=job.mode,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            context=job.context,
            existing_content=existing.get("existing_content"),
        )
        details: Dict[str, Any] = {"input_tokens": result.input_tokens, "output_tokens": result.output_tokens}
        details.update(redact_hashes(user_prompt, result.content))
        self.audit.log_event(job.id, "claude_complete", details=details)
        return result.model_dump()

    def _write(
        self,
        job: Job,
        slug: str,
        prefix: str,
        existing: Dict[str, Any],
        generated: Dict[str, Any],
        job_start: int,
    ) -> Dict[str, str]:
        existing_dir = existing.get("existing_dir_path")
        existing_content = existing.get("existing_content")
        has_existing = bool(existing.get("existing_sha") and existing_content and existing_dir)

        if has_existing:
            base_dir = existing_dir
        else:
            base_dir = f"{self.ideas_dir}/{prefix}-{slug}"
            if existing_dir and not existing_content:
                self.audit.log_event(
                    job.id,
                    "update_missing_research",
                    details={"path": existing_dir, "message": "Directory exists but research.md not found, creating new file"},
                )
        research_path = f"{base_dir}/research.md"
        log_path = f"{base_dir}/{LOG_FILENAME}"

        message = f"idea: {slug} - research updated" if job.update else f"idea: {slug} - research complete"
        new_content = generated["content"]
        final_content = f"{existing_content}\n\n{new_content}" if has_existing else new_content

        if has_existing:
            # The sha from check_existing may be minutes old by now
            current = self.content.get_file(research_path)
            if current is not None:
                self.content.update_file(research_path, final_content, current.sha, message)
            else:
                self.content.create_file(research_path, final_content, message)
        else:
            self.content.create_file(research_path, final_content, message)

        now = self.clock()
        entry = ExplorationLogEntry(
            jobId=job.id,
            idea=job.idea,
            mode=job.mode,
            model=job.model,
            context=job.context,
            isUpdate=job.update,
            startedAt=_iso(job_start),
            completedAt=_iso(now),
            durationMs=now - job_start,
            tokens=TokenUsage(
                input=generated.get("input_tokens", 0),
                output=generated.get("output_tokens", 0),
                total=generated.get("input_tokens", 0) + generated.get("output_tokens", 0),
            ),
            outputPath=research_path,
        )
        self._append_log(job.id, log_path, entry, slug)

        self.audit.log_event(job.id, "github_write_complete", details={"path": research_path})
        return {
            "research_path": research_path,
            "log_path": log_path,
            "github_url": self.content.blob_url(research_path),
        }

    def _append_log(self, job_id: str, log_path: str, entry: ExplorationLogEntry, slug: str) -> None:
        existing_log = self.content.get_file(log_path)
        if existing_log is None:
            self.content.create_file(log_path, new_log(entry), f"log: {slug}")
            return

        merged = merge_log(existing_log.content, entry)
        if merged.recovered:
            self.audit.warn(job_id, "log_parse_failed", details={"path": log_path, "error": merged.parse_error})
            message = f"log: {slug}"
        else:
            message = f"log: {slug} - updated"
        self.content.update_file(log_path, merged.content, existing_log.sha, message)

    # --- Progress bookkeeping ---

    def _progress(self, job_id: str, index: int, prev_start: Optional[int] = None) -> None:
        step = WORKFLOW_STEPS[index]
        now = self.clock()
        partial: Dict[str, Any] = {
            "current_step": step.name,
            "current_step_label": step.label,
            "steps_completed": index,
            "steps_total": len(WORKFLOW_STEPS),
            "step_started_at": now,
        }
        try:
            if prev_start is not None and index > 0:
                previous = WORKFLOW_STEPS[index - 1].name
                job = self.store.get(job_id)
                # A replay must not clobber the duration measured the first time
                if job is not None and previous not in job.step_durations:
                    partial["step_durations"] = {previous: now - prev_start}
            self.store.update(job_id, partial)
        except IdeaExplorerError as e:
            self.audit.error(job_id, "update_step_progress_failed", e)

    def _record_duration(self, job_id: str, name: str, started: int) -> None:
        try:
            job = self.store.get(job_id)
            if job is not None and name not in job.step_durations:
                self.store.update(job_id, {"step_durations": {name: self.clock() - started}}, known=job)
        except IdeaExplorerError as e:
            self.audit.error(job_id, "record_step_duration_failed", e)


def _dump(delivery: Optional[DeliveryResult]) -> Optional[Dict[str, Any]]:
    return delivery.model_dump() if delivery is not None else None


def build_workflow(store: Optional[JobStore] = None) -> ExplorationWorkflow:
    """Wire the production collaborators from settings."""
    store = store or JobStore()
    return ExplorationWorkflow(store=store, content=GitHubClient.from_settings())
