"""Unit tests for LLMExtractionEngine prompt handling and response parsing."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from trainkb.interfaces.llm_provider import ILLMProvider
from trainkb.services.extraction_engine import LLMExtractionEngine
from trainkb.services.synthesizer import Synthesizer
from trainkb.utils.errors import LLMError

_SCENARIO = {
    "name": "Ants after treatment",
    "base_situation": "Customer found ants two days after a visit.",
    "customer_goals": "Get a free re-treatment",
    "csr_objectives": ["Apologize", "Book a re-service"],
    "scoring_focus": ["empathy", "resolution"],
    "escalation_triggers": ["Blaming the customer"],
    "de_escalation_triggers": ["Offering a same-week visit"],
    "resolution_conditions": ["Re-service booked"],
    "difficulty": "hard",
}

_PAYLOAD = {
    "packages": [{"name": "Silver Plan", "selling_points": ["Quarterly visits"]}],
    "guidelines": [{"guideline_type": "process", "title": "Confirm address"}],
    "training_topics": [{"title": "Price objections"}],
}


def _llm(response: str | Exception) -> MagicMock:
    llm = MagicMock(spec=ILLMProvider)
    if isinstance(response, Exception):
        llm.complete = AsyncMock(side_effect=response)
    else:
        llm.complete = AsyncMock(return_value=response)
    llm.get_provider_name.return_value = "anthropic"
    return llm


class TestExtract:
    @pytest.mark.asyncio
    async def test_plain_json(self) -> None:
        engine = LLMExtractionEngine(_llm(json.dumps(_PAYLOAD)))
        fragment = await engine.extract("Silver Plan is $49 per quarter.", 2, 5)

        assert fragment.chunk_ordinal == 2
        assert fragment.packages[0]["name"] == "Silver Plan"
        assert fragment.counts() == {"package_count": 1, "guideline_count": 1, "topic_count": 1}

    @pytest.mark.asyncio
    async def test_fenced_json(self) -> None:
        response = "Here you go:\n```json\n" + json.dumps(_PAYLOAD) + "\n```\nAnything else?"
        fragment = await LLMExtractionEngine(_llm(response)).extract("text", 0, 1)
        assert len(fragment.guidelines) == 1

    @pytest.mark.asyncio
    async def test_json_wrapped_in_prose(self) -> None:
        response = "Sure! " + json.dumps(_PAYLOAD) + " Hope that helps."
        fragment = await LLMExtractionEngine(_llm(response)).extract("text", 0, 1)
        assert len(fragment.training_topics) == 1

    @pytest.mark.asyncio
    async def test_odd_shapes_tolerated(self) -> None:
        response = json.dumps({"packages": {"name": "Solo"}, "guidelines": None, "courses": ["x"]})
        fragment = await LLMExtractionEngine(_llm(response)).extract("text", 0, 1)

        assert fragment.packages == [{"name": "Solo"}]
        assert fragment.guidelines == []
        assert fragment.courses == []

    @pytest.mark.asyncio
    async def test_prompt_carries_chunk_position_and_text(self) -> None:
        llm = _llm(json.dumps(_PAYLOAD))
        await LLMExtractionEngine(llm, temperature=0.0, max_tokens=512).extract("THE TEXT", 1, 3)

        kwargs = llm.complete.call_args.kwargs
        assert "part 2 of 3" in kwargs["user_prompt"]
        assert kwargs["user_prompt"].endswith("THE TEXT")
        assert kwargs["temperature"] == 0.0
        assert kwargs["max_tokens"] == 512
        assert kwargs["json_output"] is True

    @pytest.mark.asyncio
    async def test_blank_chunk_skips_the_model(self) -> None:
        llm = _llm("{}")
        fragment = await LLMExtractionEngine(llm).extract("   \n", 4, 5)

        assert fragment.chunk_ordinal == 4
        assert fragment.counts()["package_count"] == 0
        llm.complete.assert_not_called()


class TestFailures:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", ["no json here", "{not: valid}", "[1, 2, 3]"])
    async def test_unusable_response_raises_value_error(self, response: str) -> None:
        with pytest.raises(ValueError):
            await LLMExtractionEngine(_llm(response)).extract("text", 0, 1)

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self) -> None:
        engine = LLMExtractionEngine(_llm(LLMError("quota exceeded", provider_name="anthropic")))
        with pytest.raises(LLMError):
            await engine.extract("text", 0, 1)


class TestScenarios:
    @pytest.mark.asyncio
    async def test_prompt_asks_for_courses_and_scenarios(self) -> None:
        llm = _llm(json.dumps(_PAYLOAD))
        await LLMExtractionEngine(llm).extract("text", 0, 1)

        prompt = llm.complete.call_args.kwargs["user_prompt"]
        for key in (
            '"courses"',
            '"scenarios"',
            "base_situation",
            "csr_objectives",
            "scoring_focus",
            "customer_goals",
            "resolution_conditions",
            "escalation_triggers",
            "de_escalation_triggers",
        ):
            assert key in prompt

    @pytest.mark.asyncio
    async def test_fenced_scenarios_become_module_templates(self) -> None:
        payload = {
            "training_topics": [
                {"title": "Handling callbacks", "course": "Service", "scenarios": [_SCENARIO]}
            ],
            "courses": [
                {
                    "name": "Retention",
                    "modules": [{"name": "Cancellations", "scenarios": [_SCENARIO]}],
                }
            ],
        }
        response = "```json\n" + json.dumps(payload) + "\n```"
        fragment = await LLMExtractionEngine(_llm(response)).extract("text", 0, 1)

        corpus = Synthesizer().synthesize([fragment])

        courses = {c.name: c for c in corpus.courses}
        for course, module in (("Service", "Handling callbacks"), ("Retention", "Cancellations")):
            (template,) = courses[course].modules[0].scenario_templates
            assert courses[course].modules[0].name == module
            assert template.name == "Ants after treatment"
            assert template.situation == "Customer found ants two days after a visit."
            assert template.customer_goals == "Get a free re-treatment"
            assert template.objectives == ["Apologize", "Book a re-service"]
            assert template.scoring_weights == {"empathy": 1.0, "resolution": 1.0}
            assert template.escalation_triggers == ["Blaming the customer"]
            assert template.de_escalation_triggers == ["Offering a same-week visit"]
            assert template.resolution_conditions == ["Re-service booked"]
            assert template.difficulty == "hard"


def test_engine_name_includes_provider() -> None:
    assert LLMExtractionEngine(_llm("{}")).get_engine_name() == "llm:anthropic"
