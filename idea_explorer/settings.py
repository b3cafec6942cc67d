from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import orjson
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator


_PROJECT_ROOT = Path(__file__).resolve().parents[1]
_CONFIG_PATH = _PROJECT_ROOT / "config" / "config.json"


class StepPolicy(BaseModel):
    retry_limit: int = 3
    retry_delay_s: float = 10
    timeout_s: float = 30


class _ArtifactsCfg(BaseModel):
    base_dir: str


class _StorageCfg(BaseModel):
    database_url: str = "sqlite:///idea_explorer.db"


class _GitHubCfg(BaseModel):
    repo: str = ""
    branch: str = "main"
    ideas_dir: str = "ideas"
    api_base: str = "https://api.github.com"
    request_timeout_s: int = 30


class _LLMCfg(BaseModel):
    provider: str
    api_base: str = "https://api.anthropic.com/v1/messages"
    models: Dict[str, str]
    max_tokens: int = 16384
    request_timeout_s: int = 600


class _WebhookCfg(BaseModel):
    max_attempts: int = 3
    delays_s: List[float] = Field(default_factory=lambda: [1, 5, 30])
    request_timeout_s: int = 10

    @field_validator("delays_s")
    @classmethod
    def _non_empty(cls, v: List[float]) -> List[float]:
        if not v:
            raise ValueError("delays_s must contain at least one delay")
        return v


class _RawConfig(BaseModel):
    artifacts: _ArtifactsCfg
    storage: _StorageCfg = Field(default_factory=_StorageCfg)
    github: _GitHubCfg = Field(default_factory=_GitHubCfg)
    llm: _LLMCfg
    webhook: _WebhookCfg = Field(default_factory=_WebhookCfg)
    steps: Optional[Dict[str, StepPolicy]] = None


_DEFAULT_STEPS = {
    "initialize": StepPolicy(retry_limit=3, retry_delay_s=10, timeout_s=30),
    "check_existing": StepPolicy(retry_limit=3, retry_delay_s=10, timeout_s=60),
    "generate_research": StepPolicy(retry_limit=2, retry_delay_s=30, timeout_s=600),
    "write_github": StepPolicy(retry_limit=3, retry_delay_s=15, timeout_s=0),
    "notify": StepPolicy(retry_limit=3, retry_delay_s=10, timeout_s=30),
}


class Settings(BaseModel):
    artifacts_base_dir: str = Field(..., description="Base directory for per-job audit logs")
    database_url: str
    github: Dict[str, Any]
    llm: Dict[str, Any]
    webhook: Dict[str, Any]
    steps: Dict[str, StepPolicy]

    @classmethod
    def load(cls) -> "Settings":
        # Load environment variables
        load_dotenv(dotenv_path=_PROJECT_ROOT / ".env", override=False)

        # Load and validate config
        try:
            raw_bytes = _CONFIG_PATH.read_bytes()
        except FileNotFoundError as e:
            raise FileNotFoundError(f"Missing config file at {_CONFIG_PATH}") from e
        try:
            raw_obj = orjson.loads(raw_bytes)
        except orjson.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in config file: {_CONFIG_PATH}") from e
        try:
            validated = _RawConfig.model_validate(raw_obj)
        except ValidationError as e:
            raise ValueError(f"Invalid config structure: {e}") from e

        github_cfg = validated.github.model_dump()
        # Deployment-specific target repo may come from the environment
        if os.getenv("GITHUB_REPO"):
            github_cfg["repo"] = os.environ["GITHUB_REPO"]
        if os.getenv("GITHUB_BRANCH"):
            github_cfg["branch"] = os.environ["GITHUB_BRANCH"]

        steps = dict(_DEFAULT_STEPS)
        if validated.steps:
            steps.update(validated.steps)

        return cls(
            artifacts_base_dir=validated.artifacts.base_dir,
            database_url=os.getenv("IDEA_EXPLORER_DATABASE_URL") or validated.storage.database_url,
            github=github_cfg,
            llm=validated.llm.model_dump(),
            webhook=validated.webhook.model_dump(),
            steps=steps,
        )

    @property
    def cfg_hash(self) -> str:
        from hashlib import sha256

        try:
            raw_bytes = _CONFIG_PATH.read_bytes()
        except FileNotFoundError:
            raw_bytes = b"{}"
        # Re-serialize canonically to avoid ordering differences from authoring
        try:
            obj = orjson.loads(raw_bytes)
        except orjson.JSONDecodeError:
            obj = {}
        canonical = orjson.dumps(obj, option=orjson.OPT_SORT_KEYS)
        return sha256(canonical).hexdigest()

    def step_policy(self, name: str) -> StepPolicy:
        return self.steps.get(name) or StepPolicy()

    def artifacts_dir_for(self, job_id: str) -> Path:
        base = Path(self.artifacts_base_dir)
        # Resolve relative to project root if relative path provided
        if not base.is_absolute():
            base = _PROJECT_ROOT / base
        job_dir = base / job_id
        base.mkdir(parents=True, exist_ok=True)
        job_dir.mkdir(parents=True, exist_ok=True)
        return job_dir


# Singleton settings instance for convenience
settings = Settings.load()
