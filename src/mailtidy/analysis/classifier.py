"""Batched LLM classification with a total response parser."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mailtidy.ai.base import AIProvider
from mailtidy.ai.prompts import (
    FAST_ENHANCED_PROMPT,
    FAST_INITIAL_PROMPT,
    FULL_ENHANCED_PROMPT,
    FULL_INITIAL_PROMPT,
    SYSTEM_PROMPT,
)
from mailtidy.log import get_logger
from mailtidy.models import (
    AnalysisMode,
    AnalysisResult,
    Category,
    Confidence,
    Level,
    Message,
    Recommendation,
    utcnow,
)

logger = get_logger(__name__)

DEFAULT_REASONING = "Analysis failed - keeping for safety until manual review"

_FENCE_RE = re.compile(r"```json\n?|\n?```")


def default_result() -> AnalysisResult:
    """The conservative result used whenever the model gives us nothing usable."""
    return AnalysisResult(
        category=Category.UNKNOWN,
        recommendation=Recommendation.KEEP,
        reasoning=DEFAULT_REASONING,
        confidence=Confidence.LOW,
        priority=Level.LOW,
        space_impact=Level.LOW,
    )


def _enum_or(enum_cls, value, fallback):
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        return fallback


class BatchItem(BaseModel):
    """One entry of the model's JSON array."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: int | str | None = None
    category: str | None = None
    recommendation: str | None = Field(None, alias="cleanupRecommendation")
    reasoning: str | None = None
    confidence: str | None = None
    priority: str | None = None
    space_impact: str | None = Field(None, alias="spaceImpact")

    def to_result(self) -> AnalysisResult:
        return AnalysisResult(
            category=_enum_or(Category, self.category, Category.UNKNOWN),
            recommendation=_enum_or(Recommendation, self.recommendation, Recommendation.KEEP),
            reasoning=self.reasoning or DEFAULT_REASONING,
            confidence=_enum_or(Confidence, self.confidence, Confidence.LOW),
            priority=_enum_or(Level, self.priority, None) if self.priority else None,
            space_impact=_enum_or(Level, self.space_impact, None) if self.space_impact else None,
        )


@dataclass
class ParsedBatch:
    """Parser output: always ``expected_count`` results, plus what went wrong if anything."""
    results: list[AnalysisResult]
    error: str | None = None


def _coerce_item(raw) -> AnalysisResult | None:
    if not isinstance(raw, dict):
        return None
    try:
        return BatchItem.model_validate(raw).to_result()
    except ValidationError:
        return None


def parse_batch_response(text: str, expected_count: int) -> ParsedBatch:
    """Turn raw model text into exactly ``expected_count`` results. Never raises.

    Slot i takes the entry whose ``id`` is i + 1, else the i-th entry, else the
    default result. A single object is applied to every slot.
    """
    cleaned = _FENCE_RE.sub("", text or "").strip()
    try:
        parsed = json.loads(cleaned)
    except (json.JSONDecodeError, TypeError) as e:
        return ParsedBatch([default_result() for _ in range(expected_count)], error=str(e))

    if isinstance(parsed, dict):
        single = _coerce_item(parsed) or default_result()
        return ParsedBatch(
            [replace(single) for _ in range(expected_count)]
        )

    if not isinstance(parsed, list):
        return ParsedBatch(
            [default_result() for _ in range(expected_count)],
            error=f"expected a JSON array, got {type(parsed).__name__}",
        )

    by_id: dict[int, dict] = {}
    for entry in parsed:
        if isinstance(entry, dict) and isinstance(entry.get("id"), int):
            by_id.setdefault(entry["id"], entry)

    results = []
    missing = 0
    for i in range(expected_count):
        raw = by_id.get(i + 1)
        if raw is None and i < len(parsed):
            raw = parsed[i]
        result = _coerce_item(raw)
        if result is None:
            missing += 1
            result = default_result()
        results.append(result)

    error = f"{missing} of {expected_count} entries missing or invalid" if missing else None
    return ParsedBatch(results, error=error)


def relative_age(date: datetime, now: datetime) -> str:
    """Compact age label like 'today', '3d ago' or '2mo ago'."""
    days = int((now - date).total_seconds() // 86400)
    if days < 1:
        return "today"
    if days < 7:
        return f"{days}d ago"
    if days < 30:
        return f"{days // 7}w ago"
    if days < 365:
        return f"{days // 30}mo ago"
    return f"{days // 365}y ago"


def display_sender(message: Message) -> str:
    if message.sender:
        return message.sender
    if message.sender_name and message.sender_name != message.sender_email:
        return f"{message.sender_name} <{message.sender_email}>"
    return message.sender_email


@dataclass
class BatchOutcome:
    """Results of one or more model calls over a batch."""
    results: list[AnalysisResult]
    input_tokens: int = 0
    output_tokens: int = 0
    requests: int = 0
    error: str | None = None  # set when the model could not be reached
    enhanced_indices: list[int] = field(default_factory=list)


class AIClassifier:
    """Classify batches of messages with one model call per batch."""

    def __init__(
        self,
        provider: AIProvider,
        model: str,
        now: Callable[[], datetime] = utcnow,
    ):
        self.provider = provider
        self.model = model
        self._now = now

    def build_prompt(self, messages: list[Message], mode: AnalysisMode, enhanced: bool = False) -> str:
        now = self._now()
        lines = []
        for i, m in enumerate(messages, 1):
            line = f'{i}. "{m.subject}" from {display_sender(m)} ({relative_age(m.date, now)})'
            if enhanced and m.snippet:
                line += f' | Preview: "{m.snippet}"'
            lines.append(line)

        full = mode == AnalysisMode.FULL
        if enhanced:
            template = FULL_ENHANCED_PROMPT if full else FAST_ENHANCED_PROMPT
        else:
            template = FULL_INITIAL_PROMPT if full else FAST_INITIAL_PROMPT
        return template.format(emails="\n".join(lines))

    @staticmethod
    def max_tokens(count: int, enhanced: bool = False) -> int:
        if enhanced:
            return min(6000, count * 150)
        return min(4000, count * 100)

    async def classify(
        self,
        messages: list[Message],
        mode: AnalysisMode = AnalysisMode.FAST,
        enhanced: bool = False,
    ) -> BatchOutcome:
        """One model call over ``messages``. Never raises.

        A transport failure yields default results with ``error`` set, so the
        caller can decide whether to retry message by message.
        """
        if not messages:
            return BatchOutcome(results=[])

        prompt = self.build_prompt(messages, mode, enhanced=enhanced)
        try:
            completion = await self.provider.complete(
                prompt=prompt,
                model=self.model,
                max_tokens=self.max_tokens(len(messages), enhanced),
                system=SYSTEM_PROMPT,
            )
        except Exception as e:
            logger.error("AI call failed for %d emails: %s", len(messages), e)
            return BatchOutcome(
                results=[default_result() for _ in messages],
                requests=1,
                error=str(e) or type(e).__name__,
            )

        parsed = parse_batch_response(completion.text, len(messages))
        if parsed.error:
            logger.warning("AI response only partly usable: %s", parsed.error)

        count = len(messages)
        per_input = round(completion.input_tokens / count)
        per_output = round(completion.output_tokens / count)
        for result in parsed.results:
            result.input_tokens = per_input
            result.output_tokens = per_output
            result.follow_up = enhanced

        return BatchOutcome(
            results=parsed.results,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
            requests=1,
        )
