from __future__ import annotations

import json
from types import SimpleNamespace
from typing import List

import pytest

from orthoiq.agent.specialists import (
    ALL_SPECIALISTS,
    SPECIALIST_MOVEMENT,
    SPECIALIST_TRIAGE,
    LLMSpecialistAgent,
    SpecialistAgent,
    build_default_agents,
)
from orthoiq.models.schemas import CaseInput, SpecialistAssessment, SpecialtyTag
from orthoiq.services import llm as llm_module
from orthoiq.services.llm import LLMService, extract_json, repair_truncated_json


class FakeCompletions:
    def __init__(self, replies: List[object]):
        self.replies = list(replies)
        self.calls: List[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])


def _service(*replies) -> tuple[LLMService, FakeCompletions]:
    completions = FakeCompletions(list(replies))
    service = LLMService(model_id="test-model", base_url="http://llm.test/v1", api_key="k")
    service._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return service, completions


ENVELOPE = {
    "summary": "Likely patellofemoral pain",
    "assessment": {"primary_findings": ["anterior knee pain"], "clinical_importance": "Medium"},
    "recommendations": [{"intervention": "Quadriceps strengthening", "priority": "high", "timeline": "2 weeks"}],
    "questions_for_agents": [{"target_agent": "movementDetective", "question": "Valgus on squat?", "priority": "HIGH"}],
    "agreement_with_triage": "Full",
    "confidence": 0.72,
}


# ──────────────────────────────────────────────
# JSON helpers
# ──────────────────────────────────────────────

def test_extract_json_from_code_block() -> None:
    assert extract_json('Sure:\n```json\n{"a": 1}\n```') == '{"a": 1}'


def test_extract_json_from_prose() -> None:
    assert extract_json('The answer is {"a": {"b": [1, 2]}} as requested.') == '{"a": {"b": [1, 2]}}'


def test_repair_truncated_json() -> None:
    repaired = repair_truncated_json('{"summary": "cut off", "recommendations": [{"intervention": "Rest')
    assert json.loads(repaired)["recommendations"][0]["intervention"] == "Rest"
    assert repair_truncated_json("   ") is None


# ──────────────────────────────────────────────
# LLMService
# ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_generate_structured_parses_envelope() -> None:
    service, completions = _service(f"```json\n{json.dumps(ENVELOPE)}\n```")

    result = await service.generate_structured("Assess", SpecialistAssessment, system_prompt="sys")

    assert result.recommendations[0].priority == 2
    assert result.questions_for_agents[0].priority.value == "high"
    assert result.agreement_with_triage.value == "full"
    assert completions.calls[0]["model"] == "test-model"
    assert completions.calls[0]["messages"][0] == {"role": "system", "content": "sys"}


@pytest.mark.asyncio
async def test_generate_structured_retries_invalid_json() -> None:
    service, completions = _service("not json at all", json.dumps(ENVELOPE))

    result = await service.generate_structured("Assess", SpecialistAssessment)

    assert result.summary == "Likely patellofemoral pain"
    assert len(completions.calls) == 2


@pytest.mark.asyncio
async def test_generate_structured_gives_up_after_two_attempts() -> None:
    service, _ = _service("nope", "still nope")
    with pytest.raises(ValueError, match="after 2 attempts"):
        await service.generate_structured("Assess", SpecialistAssessment)


@pytest.mark.asyncio
async def test_transient_errors_are_retried(monkeypatch) -> None:
    monkeypatch.setattr(llm_module, "RETRY_BASE_DELAY", 0.0)
    service, completions = _service(RuntimeError("503 Service Unavailable"), "hello")

    assert await service.generate("ping") == "hello"
    assert len(completions.calls) == 2


@pytest.mark.asyncio
async def test_permanent_errors_are_raised() -> None:
    service, completions = _service(RuntimeError("invalid api key"))
    with pytest.raises(RuntimeError, match="invalid api key"):
        await service.generate("ping")
    assert len(completions.calls) == 1


@pytest.mark.asyncio
async def test_readiness_check() -> None:
    ready, _ = _service("pong")
    assert await ready.check_readiness() is True
    down, _ = _service(RuntimeError("connection refused"))
    assert await down.check_readiness() is False


# ──────────────────────────────────────────────
# LLM-backed specialists
# ──────────────────────────────────────────────

def test_default_panel_covers_every_specialty() -> None:
    agents = build_default_agents(LLMService(api_key="k"))
    assert [a.specialty for a in agents] == list(SpecialtyTag)
    assert len({a.agent_id for a in agents}) == len(ALL_SPECIALISTS)
    assert all(isinstance(a, SpecialistAgent) for a in agents)


@pytest.mark.asyncio
async def test_assess_fills_missing_confidence_and_gains_experience() -> None:
    envelope = dict(ENVELOPE)
    envelope.pop("confidence")
    service, completions = _service(json.dumps(envelope))
    agent = LLMSpecialistAgent(SPECIALIST_MOVEMENT, llm=service)

    result = await agent.assess(CaseInput(primary_complaint="Knee pain on stairs", movement_notes="valgus collapse"))

    assert result.confidence == pytest.approx(0.5)
    assert agent.experience == 1
    assert "valgus collapse" in completions.calls[0]["messages"][1]["content"]


@pytest.mark.asyncio
async def test_triage_is_told_to_agree_with_itself() -> None:
    service, completions = _service(json.dumps(ENVELOPE))
    await LLMSpecialistAgent(SPECIALIST_TRIAGE, llm=service).assess(CaseInput(primary_complaint="Hip pain"))
    assert 'agreement_with_triage to "self"' in completions.calls[0]["messages"][0]["content"]


@pytest.mark.asyncio
async def test_discuss_prepends_own_assessment() -> None:
    service, completions = _service("1. Yes")
    agent = LLMSpecialistAgent(SPECIALIST_MOVEMENT, llm=service)

    reply = await agent.discuss("QUESTIONS...", {"initial_assessment": '{"summary": "valgus"}'})

    assert reply == "1. Yes"
    assert completions.calls[0]["messages"][1]["content"].startswith("YOUR INITIAL ASSESSMENT:")


def test_confidence_grows_with_experience_and_topic_match() -> None:
    agent = LLMSpecialistAgent(SPECIALIST_MOVEMENT, llm=LLMService(api_key="k"))
    assert agent.confidence("sore wrist") == pytest.approx(0.5)
    assert agent.confidence("poor mobility") == pytest.approx(0.6)
    agent.experience = 100
    assert agent.confidence("poor mobility") == pytest.approx(1.0)
