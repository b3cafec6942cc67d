from __future__ import annotations

import os
import json
from typing import Dict, List, Optional

import requests
from pydantic import BaseModel

from .errors import GenerationFault
from .hashing import sha256_bytes
from .schemas import GenerationResult
from .settings import settings


class _LLMConfig(BaseModel):
    provider: str
    api_base: str = "https://api.anthropic.com/v1/messages"
    models: Dict[str, str]
    max_tokens: int = 16384
    request_timeout_s: int = 600


def _anthropic_headers() -> Dict[str, str]:
    key = os.getenv("ANTHROPIC_API_KEY")
    if not key:
        raise RuntimeError("Missing ANTHROPIC_API_KEY in environment")
    return {
        "x-api-key": key,
        "anthropic-version": "2023-06-01",
        "content-type": "application/json",
    }


def _post_anthropic(url: str, model: str, system: str, messages: List[Dict], **kwargs) -> Dict:
    payload = {
        "model": model,
        "system": system,
        "messages": messages,
        "max_tokens": kwargs.get("max_tokens", 16384),
    }
    timeout = kwargs.get("timeout", 600)
    resp = requests.post(url, headers=_anthropic_headers(), data=json.dumps(payload), timeout=timeout)
    resp.raise_for_status()
    return resp.json()


class GenerationClient:
    """Turns prompts into a research document plus token usage."""

    def __init__(self, model: str = "sonnet", config: Optional[Dict] = None) -> None:
        self.cfg = _LLMConfig(**(config or settings.llm))
        if model not in self.cfg.models:
            raise GenerationFault("configure", cause=ValueError(f"Unknown model alias: {model}"))
        self.model_alias = model
        self.model_id = self.cfg.models[model]

    def generate(
        self,
        idea: str,
        mode: str,
        system_prompt: str,
        user_prompt: str,
        context: Optional[str] = None,
        existing_content: Optional[str] = None,
    ) -> GenerationResult:
        try:
            data = _post_anthropic(
                self.cfg.api_base,
                self.model_id,
                system_prompt,
                [{"role": "user", "content": user_prompt}],
                max_tokens=self.cfg.max_tokens,
                timeout=self.cfg.request_timeout_s,
            )
        except (requests.RequestException, RuntimeError, ValueError) as e:
            raise GenerationFault("generateResearch", cause=e) from e

        text = ""
        for block in data.get("content") or []:
            if block.get("type") == "text":
                text = block.get("text", "")
                break
        usage = data.get("usage") or {}
        return GenerationResult(
            content=text,
            input_tokens=int(usage.get("input_tokens", 0)),
            output_tokens=int(usage.get("output_tokens", 0)),
        )


def redact_hashes(prompt: str, response: str) -> Dict[str, object]:
    """Digests and sizes safe to put in the audit trail instead of raw text."""
    return {
        "prompt_sha256": sha256_bytes(prompt.encode("utf-8")),
        "response_sha256": sha256_bytes(response.encode("utf-8")),
        "prompt_len": len(prompt),
        "response_len": len(response),
    }
