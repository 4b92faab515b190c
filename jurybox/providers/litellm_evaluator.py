"""LiteLLM-backed Evaluator.

Renders the scoring and discussion prompts for a judge, routes the call
to any provider through litellm.acompletion() with exponential backoff
on transient errors, and parses the JSON object the judge replies with.
Every failure surfaces as EvaluationError so the orchestrator treats it
as a per-agent failure.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from typing import Any

import litellm

# Suppress LiteLLM's "Give Feedback / Get Help" and "Provider List" banners
litellm.suppress_debug_info = True

from jurybox.errors import EvaluationError
from jurybox.prompts import render_prompt
from jurybox.providers.base import Evaluator
from jurybox.schemas.evaluation import (
    DiscussionResult,
    EvaluatorConfig,
    JudgeAgent,
    PeerScore,
    ScoreResult,
)

logger = logging.getLogger(__name__)

# First {...} span in the reply, tolerating markdown fences around it
_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

_MAX_RETRIES = 3
_BASE_BACKOFF = 1.0  # seconds

_USER_TURN = "Respond with the JSON object now."


def _short_error_reason(error: Exception) -> str:
    """Extract a short, user-friendly reason from a LiteLLM error."""
    error_str = str(error).lower()
    if "rate" in error_str or "429" in error_str:
        return "rate limit"
    if "overloaded" in error_str or "529" in error_str:
        return "overloaded"
    if "timeout" in error_str or isinstance(error, TimeoutError):
        return "timeout"
    if "503" in error_str or "unavailable" in error_str:
        return "service unavailable"
    if "500" in error_str or "internal" in error_str:
        return "server error"
    if "connection" in error_str:
        return "connection error"
    return str(error)[:80]


def _clamp(value: float, low: float = 0.0, high: float = 10.0) -> float:
    return max(low, min(high, value))


def extract_json_object(text: str) -> dict[str, Any]:
    """Parse the JSON object embedded in a model reply.

    Raises:
        ValueError: If the reply holds no parseable JSON object.
    """
    match = _JSON_OBJECT_RE.search(text)
    if not match:
        raise ValueError("No JSON object in model reply")
    data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError("Model reply JSON is not an object")
    return data


class LiteLLMEvaluator(Evaluator):
    """Evaluator that asks an LLM to play each judge.

    This is the only place models are called; the orchestrator sees the
    abstract Evaluator interface.
    """

    def __init__(self, config: EvaluatorConfig | None = None) -> None:
        self._config = config or EvaluatorConfig()
        self._api_key = os.environ.get(self._config.api_key_env, "")

    async def evaluate(
        self,
        agent: JudgeAgent,
        content: str,
        criteria: list[str],
    ) -> ScoreResult:
        prompt = render_prompt("evaluate", agent=agent, content=content, criteria=criteria)
        data = await self._complete_json(agent, prompt)
        try:
            aspects = {
                str(name): _clamp(float(value))
                for name, value in (data.get("aspects") or {}).items()
            }
            return ScoreResult(
                score=_clamp(float(data["score"])),
                reasoning=str(data.get("reasoning", "")),
                confidence=_clamp(float(data.get("confidence", 0.8)), 0.0, 1.0),
                aspects=aspects,
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise EvaluationError(
                f"Malformed evaluation from {agent.agent_id}: {e}",
                agent_id=agent.agent_id,
            ) from e

    async def discuss(
        self,
        agent: JudgeAgent,
        own_score: float,
        peer_scores: list[PeerScore],
        content: str,
        criteria: list[str],
    ) -> DiscussionResult:
        peer_average = (
            sum(p.score for p in peer_scores) / len(peer_scores) if peer_scores else own_score
        )
        prompt = render_prompt(
            "discuss",
            agent=agent,
            own_score=own_score,
            peer_scores=peer_scores,
            peer_average=peer_average,
            content=content,
            criteria=criteria,
        )
        data = await self._complete_json(agent, prompt)
        try:
            raw = data.get("adjusted_score", data.get("adjustedScore"))
            return DiscussionResult(
                discussion=str(data.get("discussion", "")),
                adjusted_score=None if raw is None else _clamp(float(raw)),
            )
        except (TypeError, ValueError) as e:
            raise EvaluationError(
                f"Malformed discussion from {agent.agent_id}: {e}",
                agent_id=agent.agent_id,
            ) from e

    async def _complete_json(self, agent: JudgeAgent, system: str) -> dict[str, Any]:
        kwargs = self._build_completion_kwargs([
            {"role": "system", "content": system},
            {"role": "user", "content": _USER_TURN},
        ])
        response = await self._call_with_retry(agent, kwargs)
        content = self._extract_content(response)
        try:
            return extract_json_object(content)
        except ValueError as e:
            logger.debug("Unparseable reply for %s: %.200s", agent.agent_id, content)
            raise EvaluationError(
                f"Could not parse reply for {agent.agent_id}: {e}",
                agent_id=agent.agent_id,
            ) from e

    def _build_completion_kwargs(self, messages: list[dict[str, str]]) -> dict:
        kwargs: dict = {
            "model": self._config.model,
            "messages": messages,
            "temperature": self._config.temperature,
            "max_tokens": self._config.max_tokens,
            "timeout": float(self._config.timeout),
        }
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._config.api_base:
            kwargs["api_base"] = self._config.api_base
        return kwargs

    async def _call_with_retry(self, agent: JudgeAgent, kwargs: dict) -> litellm.ModelResponse:
        """Call litellm.acompletion with exponential backoff retry.

        Retries on transient errors (rate limits, server errors, timeouts).
        Any other provider error fails immediately, wrapped in
        EvaluationError.

        Raises:
            EvaluationError: When the call cannot be completed.
        """
        last_error: Exception | None = None

        for attempt in range(_MAX_RETRIES):
            try:
                return await litellm.acompletion(**kwargs)
            except TimeoutError:
                last_error = TimeoutError(
                    f"Model call timed out after {kwargs.get('timeout')}s "
                    f"(attempt {attempt + 1}/{_MAX_RETRIES})"
                )
            except litellm.AuthenticationError:
                raise EvaluationError(
                    f"Authentication failed for {self._config.model}. "
                    f"Check that {self._config.api_key_env} is set correctly.",
                    agent_id=agent.agent_id,
                ) from None
            except litellm.BadRequestError as e:
                raise EvaluationError(
                    f"Bad request to {self._config.model}: {e}",
                    agent_id=agent.agent_id,
                ) from e
            except (
                litellm.Timeout,
                litellm.RateLimitError,
                litellm.ServiceUnavailableError,
                litellm.InternalServerError,
                litellm.APIConnectionError,
            ) as e:
                last_error = e
            except Exception as e:
                raise EvaluationError(
                    f"Model call to {self._config.model} failed: {_short_error_reason(e)}",
                    agent_id=agent.agent_id,
                ) from e

            if attempt < _MAX_RETRIES - 1:
                backoff = _BASE_BACKOFF * (2**attempt)
                logger.warning(
                    "Retry %d/%d for %s on %s (%s, backoff: %.1fs)",
                    attempt + 1,
                    _MAX_RETRIES,
                    agent.agent_id,
                    self._config.model,
                    _short_error_reason(last_error),
                    backoff,
                )
                await asyncio.sleep(backoff)

        raise EvaluationError(
            f"Model call to {self._config.model} failed after {_MAX_RETRIES} "
            f"retries: {_short_error_reason(last_error)}",
            agent_id=agent.agent_id,
        ) from last_error

    @staticmethod
    def _extract_content(response: litellm.ModelResponse) -> str:
        if not response.choices:
            return ""
        message = response.choices[0].message
        return message.content or "" if message else ""
