from __future__ import annotations

import pytest
import requests

import idea_explorer.llm_client as llm
from idea_explorer.errors import GenerationFault
from idea_explorer.llm_client import GenerationClient, redact_hashes
from idea_explorer.schemas import ExploreRequest
from idea_explorer.settings import settings


def test_generate_parses_first_text_block(monkeypatch):
    seen = {}

    def fake_post(url, model, system, messages, **kwargs):
        seen.update(model=model, system=system, messages=messages, kwargs=kwargs)
        return {
            "content": [{"type": "thinking", "thinking": "..."}, {"type": "text", "text": "# Findings"}],
            "usage": {"input_tokens": 11, "output_tokens": 22},
        }

    monkeypatch.setattr(llm, "_post_anthropic", fake_post)
    result = GenerationClient("opus").generate(
        idea="x", mode="business", system_prompt="SYS", user_prompt="USER"
    )

    assert result.content == "# Findings"
    assert (result.input_tokens, result.output_tokens) == (11, 22)
    assert seen["model"] == settings.llm["models"]["opus"]
    assert seen["messages"] == [{"role": "user", "content": "USER"}]
    assert seen["kwargs"]["max_tokens"] == settings.llm["max_tokens"]


def test_missing_api_key_is_a_generation_fault(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    with pytest.raises(GenerationFault):
        GenerationClient("sonnet").generate(idea="x", mode="business", system_prompt="s", user_prompt="u")


def test_http_error_is_a_generation_fault(monkeypatch):
    def fake_post(url, model, system, messages, **kwargs):
        raise requests.HTTPError("529 overloaded")

    monkeypatch.setattr(llm, "_post_anthropic", fake_post)
    with pytest.raises(GenerationFault) as excinfo:
        GenerationClient("sonnet").generate(idea="x", mode="business", system_prompt="s", user_prompt="u")
    assert "529" in str(excinfo.value)


def test_unknown_model_alias():
    with pytest.raises(GenerationFault):
        GenerationClient("haiku")


def test_audit_never_contains_raw_prompt(workflow, store):
    job = store.create(ExploreRequest(idea="Subscription box for houseplants", context="CONTEXT: secret pricing notes"))
    workflow.run(job.id)

    joined = (settings.artifacts_dir_for(job.id) / "audit.jsonl").read_text(encoding="utf-8")
    assert "secret pricing notes" not in joined
    assert "Generated body" not in joined
    assert "prompt_sha256" in joined


def test_redact_hashes():
    out = redact_hashes("prompt", "response")
    assert out["prompt_len"] == 6
    assert out["response_len"] == 8
    assert len(out["prompt_sha256"]) == 64
