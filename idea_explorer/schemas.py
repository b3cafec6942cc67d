from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .errors import ValidationFault


JobStatus = Literal["pending", "running", "completed", "failed"]
Mode = Literal["business", "exploration"]
Model = Literal["sonnet", "opus"]

TERMINAL_STATUSES = ("completed", "failed")


class NewIdea(BaseModel):
    kind: Literal["new"] = "new"


class UpdateExisting(BaseModel):
    """Append to the most recent research for the same slug."""

    kind: Literal["update"] = "update"


class ContinueFrom(BaseModel):
    """Build on a previous exploration of a different idea."""

    kind: Literal["continue_from"] = "continue_from"
    job_id: str


Continuation = Annotated[Union[NewIdea, UpdateExisting, ContinueFrom], Field(discriminator="kind")]


class ExploreRequest(BaseModel):
    idea: str
    mode: Mode = "business"
    model: Model = "sonnet"
    context: Optional[str] = None
    continuation: Continuation = Field(default_factory=NewIdea)
    webhook_url: Optional[str] = None
    callback_secret: Optional[str] = None

    @classmethod
    def from_flags(
        cls,
        idea: str,
        update: bool = False,
        continue_from: Optional[str] = None,
        **fields: Any,
    ) -> "ExploreRequest":
        """Build a request from the wire-level ``update``/``continue_from`` flags."""
        if update and continue_from:
            raise ValidationFault(
                "Cannot use both 'update' and 'continue_from' together. Use 'update' to append to "
                "existing research of the same idea, or 'continue_from' to build upon a previous exploration."
            )
        if update:
            continuation: Any = UpdateExisting()
        elif continue_from:
            continuation = ContinueFrom(job_id=continue_from)
        else:
            continuation = NewIdea()
        try:
            return cls(idea=idea, continuation=continuation, **fields)
        except ValidationError as e:
            raise ValidationFault(f"Invalid request: {e}") from e


class Job(BaseModel):
    id: str
    idea: str
    mode: Mode = "business"
    model: Model = "sonnet"
    status: JobStatus = "pending"
    context: Optional[str] = None
    continuation: Continuation = Field(default_factory=NewIdea)
    webhook_url: Optional[str] = None
    callback_secret: Optional[str] = None
    github_url: Optional[str] = None
    error: Optional[str] = None
    created_at: int
    notified_at: Optional[int] = None
    current_step: Optional[str] = None
    current_step_label: Optional[str] = None
    steps_completed: Optional[int] = None
    steps_total: Optional[int] = None
    step_started_at: Optional[int] = None
    step_durations: Dict[str, int] = Field(default_factory=dict)

    @property
    def update(self) -> bool:
        return isinstance(self.continuation, UpdateExisting)

    @property
    def continue_from(self) -> Optional[str]:
        if isinstance(self.continuation, ContinueFrom):
            return self.continuation.job_id
        return None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class JobMetadata(BaseModel):
    """Filterable/sortable projection stored beside each job body."""

    created_at: int
    status: JobStatus
    mode: Mode


class JobFilter(BaseModel):
    status: Optional[JobStatus] = None
    mode: Optional[Mode] = None


class JobPage(BaseModel):
    jobs: List[Job]
    total: int


class FileContent(BaseModel):
    content: str
    sha: str
    path: str


class DirectoryEntry(BaseModel):
    name: str
    path: str
    type: Literal["file", "dir"]
    sha: str = ""


class GenerationResult(BaseModel):
    content: str
    input_tokens: int = 0
    output_tokens: int = 0


class WebhookSuccessPayload(BaseModel):
    event: Literal["idea_explored"] = "idea_explored"
    status: Literal["completed"] = "completed"
    job_id: str
    idea: str
    github_url: str
    github_raw_url: str
    step_durations: Optional[Dict[str, int]] = None


class WebhookFailurePayload(BaseModel):
    event: Literal["idea_explored"] = "idea_explored"
    status: Literal["failed"] = "failed"
    job_id: str
    idea: str
    error: str
    step_durations: Optional[Dict[str, int]] = None


WebhookPayload = Union[WebhookSuccessPayload, WebhookFailurePayload]


class DeliveryResult(BaseModel):
    success: bool
    attempts: int
    status_code: Optional[int] = None


class TokenUsage(BaseModel):
    input: int
    output: int
    total: int


class ExplorationLogEntry(BaseModel):
    jobId: str
    idea: str
    mode: Mode
    model: Model
    context: Optional[str] = None
    isUpdate: bool
    startedAt: str  # UTC ISO 8601
    completedAt: str
    durationMs: int
    tokens: TokenUsage
    outputPath: str


class AuditEvent(BaseModel):
    run_id: str
    step: str
    status: Literal["ok", "warn", "error"]
    ts_iso: str  # UTC ISO 8601
    ts_ns: int   # monotonic clock nanoseconds
    input_digest: Optional[str] = None
    output_digest: Optional[str] = None
    artifact_paths: List[str] = Field(default_factory=list)
    details: Dict[str, Any] = Field(default_factory=dict)
    prev_event_hash: str
    event_hash: str
