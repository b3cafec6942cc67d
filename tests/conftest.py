from __future__ import annotations

import datetime as _dt
import hashlib
import itertools
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from idea_explorer.audit import AuditTrailAgent
from idea_explorer.errors import ConflictFault, GenerationFault
from idea_explorer.orchestrator import ExplorationWorkflow
from idea_explorer.schemas import DirectoryEntry, FileContent, GenerationResult
from idea_explorer.settings import StepPolicy, settings
from idea_explorer.storage import AuditStore, JobStore, StepResultStore, make_engine
from idea_explorer.webhook import WebhookNotifier


class FakeResponse:
    def __init__(self, status_code: int, payload=None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        return self._payload


class FakeWebhookSession:
    """Records POSTs; answers from ``responses`` (status ints or exceptions)."""

    def __init__(self, responses: Optional[List] = None) -> None:
        self.responses = list(responses or [200])
        self.calls: List[Dict] = []

    def post(self, url, data=None, headers=None, timeout=None, allow_redirects=True):
        self.calls.append(
            {"url": url, "data": data, "headers": dict(headers or {}), "allow_redirects": allow_redirects}
        )
        answer = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(answer, Exception):
            raise answer
        return FakeResponse(answer)


class FakeContentStore:
    """In-memory stand-in for GitHubClient with sha-checked writes."""

    def __init__(self, repo: str = "owner/repo", branch: str = "main") -> None:
        self.repo = repo
        self.branch = branch
        self.files: Dict[str, FileContent] = {}
        self.calls: List[tuple] = []

    def seed(self, path: str, content: str) -> FileContent:
        f = FileContent(content=content, sha=_sha(path, content), path=path)
        self.files[path] = f
        return f

    def blob_url(self, path: str) -> str:
        return f"https://github.com/{self.repo}/blob/{self.branch}/{path}"

    def raw_url(self, path: str) -> str:
        return f"https://raw.githubusercontent.com/{self.repo}/{self.branch}/{path}"

    def get_file(self, path: str) -> Optional[FileContent]:
        self.calls.append(("get_file", path))
        return self.files.get(path)

    def create_file(self, path: str, content: str, message: str) -> str:
        self.calls.append(("create_file", path, message))
        current = self.files.get(path)
        if current is not None:
            return self.update_file(path, content, current.sha, message)
        self.seed(path, content)
        return self.blob_url(path)

    def update_file(self, path: str, content: str, sha: str, message: str) -> str:
        self.calls.append(("update_file", path, sha, message))
        current = self.files.get(path)
        if current is None or current.sha != sha:
            raise ConflictFault(path)
        self.seed(path, content)
        return self.blob_url(path)

    def list_directory(self, path: str) -> List[DirectoryEntry]:
        self.calls.append(("list_directory", path))
        prefix = path.rstrip("/") + "/"
        names = sorted({p[len(prefix):].split("/", 1)[0] for p in self.files if p.startswith(prefix)})
        entries = []
        for name in names:
            full = prefix + name
            kind = "file" if full in self.files else "dir"
            entries.append(DirectoryEntry(name=name, path=full, type=kind, sha=""))
        return entries


class FakeGenerator:
    def __init__(self, content: str = "# Research\n\nGenerated body", fail_times: int = 0) -> None:
        self.content = content
        self.fail_times = fail_times
        self.calls: List[Dict] = []
        self.on_generate: Optional[Callable[[], None]] = None

    def generate(self, **kwargs) -> GenerationResult:
        self.calls.append(kwargs)
        if self.on_generate:
            self.on_generate()
        if self.fail_times < 0 or len(self.calls) <= self.fail_times:
            raise GenerationFault("generateResearch", cause=RuntimeError("model overloaded"))
        return GenerationResult(content=self.content, input_tokens=120, output_tokens=800)


def _sha(path: str, content: str) -> str:
    return hashlib.sha1(f"{path}\0{content}".encode("utf-8")).hexdigest()


@pytest.fixture(autouse=True)
def _artifacts_dir(tmp_path: Path):
    # Redirect audit logs to temp dir
    settings.artifacts_base_dir = str(tmp_path / "artifacts")


@pytest.fixture
def engine(tmp_path: Path):
    return make_engine(f"sqlite:///{tmp_path / 'idea_explorer.db'}")


@pytest.fixture
def clock():
    ticks = itertools.count(1_767_225_600_000, 1000)
    return lambda: next(ticks)


@pytest.fixture
def store(engine, clock):
    return JobStore(engine, clock=clock)


@pytest.fixture
def audit(engine):
    return AuditTrailAgent(AuditStore(engine))


@pytest.fixture
def content():
    return FakeContentStore()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def webhook_session():
    return FakeWebhookSession([200])


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def workflow(store, content, generator, webhook_session, sleeps, audit, engine, clock):
    fast = StepPolicy(retry_limit=1, retry_delay_s=0, timeout_s=0)
    policies = {name: fast for name in ("initialize", "check_existing", "generate_research", "write_github", "notify")}
    notifier = WebhookNotifier(session=webhook_session, sleep=sleeps.append, audit=audit)
    return ExplorationWorkflow(
        store=store,
        content=content,
        generator_for=lambda model: generator,
        notifier=notifier,
        step_results=StepResultStore(engine),
        audit=audit,
        policies=policies,
        ideas_dir="ideas",
        clock=clock,
        today=lambda: _dt.date(2026, 1, 10),
        sleep=lambda s: None,
    )
