# backend/agent_intelligence/services/analysis_client.py
"""
Analysis dependency: turns a window of decision data into patterns,
optimization suggestions and candidate prompt variants.

Any object with an async generate(prompt) returning AnalysisOk or
AnalysisParseError can be plugged into the InsightAggregator. The default
adapter calls OpenAI chat completions behind a circuit breaker with
exponential-backoff retries.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, Field, ValidationError

from agent_intelligence.config import settings
from agent_intelligence.errors import ExternalDependencyFailure
from agent_intelligence.utils.circuit_breaker import CircuitBreaker, CircuitBreakerError
from agent_intelligence.utils.retry_logic import retry_async

logger = logging.getLogger(__name__)

_DECODER = json.JSONDecoder()


# =========================
# Analysis payload
# =========================

class IdentifiedPattern(BaseModel):
    pattern: str
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    impact: Optional[str] = None
    examples: List[Any] = Field(default_factory=list)


class OptimizationSuggestion(BaseModel):
    suggestion: str
    priority: Optional[str] = None
    expected_improvement: Optional[str] = None
    implementation: Optional[str] = None


class GeneratedVariant(BaseModel):
    variant_name: str
    prompt_template: str
    changes: Optional[str] = None
    rationale: Optional[str] = None


class AnalysisPayload(BaseModel):
    identified_patterns: List[IdentifiedPattern] = Field(default_factory=list)
    optimization_suggestions: List[OptimizationSuggestion] = Field(default_factory=list)
    generated_variants: List[GeneratedVariant] = Field(default_factory=list)
    analysis_summary: str = ""


@dataclass
class AnalysisOk:
    patterns: List[IdentifiedPattern] = field(default_factory=list)
    suggestions: List[OptimizationSuggestion] = field(default_factory=list)
    variants: List[GeneratedVariant] = field(default_factory=list)
    summary: str = ""


@dataclass
class AnalysisParseError:
    raw: str
    reason: str = ""


AnalysisResult = Union[AnalysisOk, AnalysisParseError]


def _first_json_object(raw: str) -> Dict[str, Any]:
    """
    Decode the first complete JSON object in the reply. Text around it,
    including stray braces such as template placeholders, is ignored.
    """
    error: Optional[json.JSONDecodeError] = None
    start = raw.find("{")
    while start != -1:
        try:
            obj, _ = _DECODER.raw_decode(raw, start)
        except json.JSONDecodeError as e:
            error = error or e
        else:
            if isinstance(obj, dict):
                return obj
        start = raw.find("{", start + 1)

    if error is None:
        raise ValueError("no JSON object in response")
    raise error


def parse_analysis(raw: str) -> AnalysisResult:
    """Pull the JSON object out of a model reply and validate its shape."""
    raw = raw or ""
    try:
        payload = AnalysisPayload.model_validate(_first_json_object(raw))
    except json.JSONDecodeError as e:
        return AnalysisParseError(raw=raw, reason=f"invalid JSON: {e}")
    except ValidationError as e:
        return AnalysisParseError(raw=raw, reason=f"unexpected shape: {e.error_count()} error(s)")
    except ValueError as e:
        return AnalysisParseError(raw=raw, reason=str(e))

    return AnalysisOk(
        patterns=payload.identified_patterns,
        suggestions=payload.optimization_suggestions,
        variants=payload.generated_variants,
        summary=payload.analysis_summary,
    )


def _sample_decision(decision) -> Dict[str, Any]:
    return {
        "id": decision.id,
        "decision_type": decision.decision_type,
        "context": decision.decision_context,
        "decision_made": decision.decision_made,
        "rationale": decision.rationale,
        "confidence_score": decision.confidence_score,
        "version_label": decision.version_label,
        "outcomes": [
            {"type": o.outcome_type, "value": o.outcome_value, "source": o.feedback_source}
            for o in (decision.outcomes or [])
        ],
    }


def build_analysis_prompt(
    agent_name: str,
    decision_type: Optional[str],
    period_start: datetime,
    period_end: datetime,
    decisions: List,
    avg_confidence: Optional[float],
    performance_metrics: Dict[str, Any],
    sample_size: Optional[int] = None,
) -> str:
    sample_size = sample_size or settings.ANALYSIS_SAMPLE_SIZE
    sample = [_sample_decision(d) for d in decisions[:sample_size]]
    confidence_text = f"{avg_confidence:.2f}" if avg_confidence is not None else "n/a"

    return f"""You are an AI agent performance analyst. Analyze the following agent decision data and provide actionable insights for continuous improvement.

Agent: {agent_name}
Period: {period_start.isoformat()} to {period_end.isoformat()}
Decision Type: {decision_type or 'All types'}
Total Decisions: {len(decisions)}
Average Confidence: {confidence_text}

Performance Metrics:
{json.dumps(performance_metrics, indent=2, default=str)}

Sample Decisions (first {sample_size}):
{json.dumps(sample, indent=2, default=str)}

Please analyze and provide:
1. Identified Patterns: What patterns do you see in successful vs unsuccessful decisions?
2. Optimization Suggestions: What specific improvements would increase performance?
3. Prompt Variants: Generate 2-3 prompt template variants that could improve decision quality
4. Summary: Brief executive summary of findings

Format your response as JSON:
{{
  "identified_patterns": [
    {{"pattern": "description", "confidence": 0.0, "impact": "high|medium|low", "examples": []}}
  ],
  "optimization_suggestions": [
    {{"suggestion": "description", "priority": "high|medium|low", "expected_improvement": "percentage or description", "implementation": "how to implement"}}
  ],
  "generated_variants": [
    {{"variant_name": "name", "changes": "what's different", "rationale": "why this should work better", "prompt_template": "the actual prompt template"}}
  ],
  "analysis_summary": "executive summary of findings and recommendations"
}}"""


# =========================
# OpenAI adapter
# =========================

class OpenAIInsightGenerator:
    """
    Default analysis dependency.

    Raises ExternalDependencyFailure when the endpoint is unreachable,
    unconfigured or the breaker is open; an unparsable reply comes back as
    AnalysisParseError.
    """

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        client: Optional[AsyncOpenAI] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        api_key = api_key or settings.OPENAI_API_KEY
        self.model = model or settings.OPENAI_MODEL
        self.max_tokens = max_tokens or settings.ANALYSIS_MAX_TOKENS
        self.client = client or (AsyncOpenAI(api_key=api_key) if api_key else None)
        self.breaker = breaker or CircuitBreaker(name="analysis", failure_threshold=3, timeout=300.0)

    async def generate(self, prompt: str) -> AnalysisResult:
        if self.client is None:
            raise ExternalDependencyFailure("OPENAI_API_KEY not configured")

        try:
            raw = await self.breaker.call(self._complete, prompt)
        except CircuitBreakerError as e:
            raise ExternalDependencyFailure(str(e)) from e

        result = parse_analysis(raw)
        if isinstance(result, AnalysisParseError):
            logger.warning("Analysis reply could not be parsed: %s", result.reason)
        return result

    @retry_async(max_retries=2, base_delay=1.0, exceptions=(ExternalDependencyFailure,))
    async def _complete(self, prompt: str) -> str:
        try:
            resp = await self.client.chat.completions.create(
                model=self.model,
                temperature=0.3,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
                messages=[
                    {
                        "role": "system",
                        "content": "You analyze AI agent decisions. Return only the requested JSON.",
                    },
                    {"role": "user", "content": prompt},
                ],
            )
        except OpenAIError as e:
            raise ExternalDependencyFailure(f"Analysis request failed: {str(e)[:200]}") from e

        content = resp.choices[0].message.content if resp.choices else None
        if not content:
            raise ExternalDependencyFailure("Analysis response had no text content")
        return content
