"""LLM-backed extraction engine.

Sends one chunk of company documentation to an LLM with a prompt asking for
candidate service packages, sales guidelines, training topics and courses
(with role-play scenarios) as JSON, and returns the result as an
:class:`ExtractionFragment`.

The engine does no deduplication: the same package showing up in three
chunks produces three candidates, which the Synthesizer merges once every
chunk is parsed.  It also does not retry.  An unparseable response raises,
and the chunk processor turns that into a retryable chunk failure.
"""

from __future__ import annotations

import json
import re
from typing import Any

from trainkb.interfaces.extraction_engine import IExtractionEngine
from trainkb.interfaces.llm_provider import ILLMProvider
from trainkb.models.fragment import ExtractionFragment
from trainkb.utils.logging import get_logger

# Markdown code fences (```json ... ```) that models wrap around JSON.
_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)

_SYSTEM_PROMPT = (
    "You read internal documents of a home-services company (pest control, "
    "lawn care and similar) and pull out material for training customer "
    "service representatives.  You answer with a single JSON object and "
    "nothing else."
)

_OUTPUT_SCHEMA = """\
{
  "packages": [{
    "name": "", "description": "", "initial_price": null, "recurring_price": null,
    "service_frequency": "", "included_services": [], "included_pests": [],
    "selling_points": [],
    "objections": [{"objection": "", "response": "", "category": ""}]
  }],
  "guidelines": [{
    "guideline_type": "pricing_rule|qualification|process|communication|referral",
    "title": "", "content": "", "examples": []
  }],
  "training_topics": [{
    "title": "", "description": "", "course": "",
    "scenarios": [SCENARIO]
  }],
  "courses": [{
    "name": "", "description": "", "category": "",
    "modules": [{
      "name": "", "description": "", "difficulty": "easy|medium|hard",
      "pass_threshold": null, "scenarios": [SCENARIO]
    }]
  }]
}

SCENARIO is:
{
  "name": "", "base_situation": "", "customer_goals": "",
  "csr_objectives": [], "scoring_focus": [],
  "escalation_triggers": [], "de_escalation_triggers": [],
  "resolution_conditions": [], "difficulty": "easy|medium|hard"
}"""


class LLMExtractionEngine(IExtractionEngine):
    """Extracts candidate training data from a chunk with one LLM call."""

    def __init__(
        self,
        llm_provider: ILLMProvider,
        temperature: float = 0.2,
        max_tokens: int = 4096,
    ) -> None:
        self._llm = llm_provider
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._logger = get_logger(__name__)

    async def extract(
        self,
        chunk_text: str,
        chunk_ordinal: int,
        total_chunks: int,
    ) -> ExtractionFragment:
        """Extract candidates from one chunk.

        Raises
        ------
        LLMError
            If the provider call fails.
        ValueError
            If the response contains no usable JSON object.
        """
        if not chunk_text.strip():
            return ExtractionFragment(chunk_ordinal=chunk_ordinal)

        response = await self._llm.complete(
            system_prompt=_SYSTEM_PROMPT,
            user_prompt=self._build_prompt(chunk_text, chunk_ordinal, total_chunks),
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            json_output=True,
        )
        parsed = self._parse_response(response)
        fragment = ExtractionFragment(
            chunk_ordinal=chunk_ordinal,
            packages=parsed.get("packages"),
            guidelines=parsed.get("guidelines"),
            training_topics=parsed.get("training_topics"),
            courses=parsed.get("courses"),
        )
        self._logger.debug(
            "chunk_extracted",
            ordinal=chunk_ordinal,
            llm_provider=self._llm.get_provider_name(),
            **fragment.counts(),
        )
        return fragment

    def get_engine_name(self) -> str:
        return f"llm:{self._llm.get_provider_name()}"

    # ------------------------------------------------------------------
    # Prompt construction and parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _build_prompt(chunk_text: str, chunk_ordinal: int, total_chunks: int) -> str:
        return (
            f"This is part {chunk_ordinal + 1} of {total_chunks} of the company's "
            "documentation.  Parts may start or end mid-section; extract only "
            "what this part states.\n"
            "\n"
            "Extract:\n"
            "- Service packages: name, prices (numbers only), how often the "
            "service is performed, what is included, why customers buy it and "
            "the objections customers raise with the recommended response.\n"
            "- Sales guidelines: pricing rules, qualification steps, processes, "
            "communication standards and referral policies.\n"
            "- Training topics: distinct skills a representative should "
            "practice.  Put the course the topic belongs to in \"course\" when "
            "the document groups topics.\n"
            "- Courses: when the document lays out a training curriculum, its "
            "courses and their modules in order.\n"
            "- Scenarios: role-play calls a representative could practice for a "
            "topic or module.  Describe the caller's situation and goals, what "
            "the representative must achieve, the skills the call is scored on, "
            "what makes the caller angrier or calmer and when the call counts "
            "as resolved.\n"
            "\n"
            "Use null for unknown scalars and [] for empty lists.  Return only "
            "a JSON object shaped like:\n"
            f"{_OUTPUT_SCHEMA}\n"
            "\n"
            "## Document text\n"
            f"{chunk_text}"
        )

    @staticmethod
    def _parse_response(response: str) -> dict[str, Any]:
        """Extract the JSON object from a model response.

        Strips markdown fences and any prose around the outermost braces.

        Raises
        ------
        ValueError
            If no JSON object can be decoded.
        """
        text = response.strip()
        fence_match = _JSON_FENCE_RE.search(text)
        if fence_match:
            text = fence_match.group(1).strip()

        if not text.startswith("{"):
            brace_start = text.find("{")
            brace_end = text.rfind("}")
            if brace_start == -1 or brace_end <= brace_start:
                raise ValueError("Extraction response contained no JSON object")
            text = text[brace_start : brace_end + 1]

        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Extraction response was not valid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ValueError("Extraction response was not a JSON object")
        return parsed
