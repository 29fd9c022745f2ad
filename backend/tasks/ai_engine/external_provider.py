# tasks/ai_engine/external_provider.py
"""
OpenAI Decision Provider
========================

Primary decision path backed by the OpenAI Chat Completions API.

This module is a pure service with NO Django ORM dependencies. It handles
prompt engineering, API communication and response validation, and speaks
the DecisionProvider contract:

- None means "no answer" (e.g. the provider is not configured);
- ProviderUnavailableError means the API could not be used;
- ProviderResponseError means the API answered with an unusable payload.

The orchestrator races every call against its own timeout and falls back
to the rule engine on any of the above.
"""

from __future__ import annotations

import datetime
import json
import logging
from typing import Any, Dict, List, Mapping, Optional

from django.conf import settings
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AuthenticationError,
    OpenAI,
    OpenAIError,
    RateLimitError,
)

from .exceptions import ProviderResponseError, ProviderUnavailableError
from .types import TASK_FIELDS, ConflictResolution, Task, TaskPrediction, WorkerContext

logger = logging.getLogger(__name__)


def _clamp(value: Any, default: float = 0.0) -> float:
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return default


class OpenAIDecisionProvider:
    """
    Asks an OpenAI model for construction task decisions.

    Uses DEFERRED INITIALIZATION: a missing API key does not raise. The
    provider tracks its availability and answers None when it cannot be used.

    Attributes:
        client (OpenAI | None): Initialized client, or None if unavailable.
        model (str): The OpenAI model to use.
        is_configured (bool): Whether the provider is ready.
        configuration_error (str | None): Description of configuration issue, if any.
    """

    # Default model supporting JSON response format
    DEFAULT_MODEL: str = "gpt-3.5-turbo-0125"

    DEFAULT_TEMPERATURE: float = 0.2  # Low temperature for repeatable decisions
    DEFAULT_MAX_TOKENS: int = 600
    # The orchestrator races its own, shorter timeout; this bounds the socket so an
    # abandoned call does not outlive it by much
    DEFAULT_TIMEOUT: float = 10.0
    PRIMARY_TIMEOUT_MULTIPLE: float = 2.0

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        clock=None,
        **client_kwargs: Any,
    ) -> None:
        """
        This initializer NEVER raises.

        Args:
            api_key: OpenAI API key. Falls back to settings.OPENAI_API_KEY.
            model: Model identifier. Falls back to settings.AI_DECISION_MODEL.
            timeout: Per-request timeout in seconds.
            clock: Returns the current aware datetime (predictions are relative to it).
            **client_kwargs: Additional keyword arguments passed to the OpenAI client.
        """
        self.model: str = model or getattr(settings, "AI_DECISION_MODEL", None) or self.DEFAULT_MODEL
        self.timeout: float = timeout or self._default_timeout()
        self._clock = clock or (lambda: datetime.datetime.now(datetime.timezone.utc))
        self._client_kwargs: Dict[str, Any] = client_kwargs

        self.api_key: Optional[str] = None
        self.client: Optional[OpenAI] = None
        self.is_configured: bool = False
        self.configuration_error: Optional[str] = None

        self._configure(api_key)

    def _default_timeout(self) -> float:
        primary_timeout = getattr(settings, "AI_PRIMARY_TIMEOUT", None)
        if not primary_timeout:
            return self.DEFAULT_TIMEOUT
        return min(self.DEFAULT_TIMEOUT, float(primary_timeout) * self.PRIMARY_TIMEOUT_MULTIPLE)

    def _configure(self, api_key: Optional[str] = None) -> None:
        resolved_key = api_key or getattr(settings, "OPENAI_API_KEY", None) or ""
        if not resolved_key:
            self.configuration_error = (
                "OPENAI_API_KEY is not configured. "
                "Set the OPENAI_API_KEY environment variable or Django setting."
            )
            logger.warning(f"OpenAIDecisionProvider: {self.configuration_error}")
            return

        try:
            self.api_key = resolved_key
            self.client = OpenAI(api_key=self.api_key, max_retries=0, **self._client_kwargs)
            self.is_configured = True
            self.configuration_error = None
            logger.info(f"OpenAIDecisionProvider initialized with model={self.model}")
        except Exception as e:
            self.configuration_error = f"Failed to initialize OpenAI client: {str(e)}"
            logger.error(f"OpenAIDecisionProvider: {self.configuration_error}")
            self.client = None
            self.is_configured = False

    # -----------------------------------------------------------------------
    # DecisionProvider contract
    # -----------------------------------------------------------------------

    def prioritize_tasks(
        self, tasks: List[Task], context: WorkerContext
    ) -> Optional[List[Task]]:
        if not self._ready() or not tasks:
            return None

        schema = {"ordered_task_ids": [task.id for task in tasks], "confidence": 0.9}
        data = self._complete(
            system_prompt=(
                "You are a construction site scheduler. Order the tasks so the crew "
                "works on the most important available work first.\n\n"
                "RULES:\n"
                "1. Safety-critical tasks always come first.\n"
                "2. Use good weather for weather-dependent work.\n"
                "3. Consider inspections, due dates, materials and crew skills.\n"
                "4. Include every task id exactly once.\n"
                "5. Return ONLY valid JSON. No markdown, no commentary.\n"
                f"6. The output must strictly follow this schema: {json.dumps(schema)}"
            ),
            user_content=(
                f"Site context: {json.dumps(context.to_dict(), sort_keys=True)}\n"
                f"Tasks: {json.dumps([task.to_dict() for task in tasks], sort_keys=True)}"
            ),
        )

        ordered_ids = data.get("ordered_task_ids")
        if not isinstance(ordered_ids, list):
            raise ProviderResponseError("Missing ordered_task_ids in response")

        by_id = {task.id: task for task in tasks}
        ordered = [by_id[str(task_id)] for task_id in ordered_ids if str(task_id) in by_id]
        return ordered or None

    def predict_task_lifecycle(
        self, task: Task, context: WorkerContext
    ) -> Optional[TaskPrediction]:
        if not self._ready():
            return None

        schema = {
            "days_to_complete": 2,
            "risk_factors": ["Weather dependent"],
            "recommended_actions": ["Review dependencies"],
            "confidence_score": 0.8,
            "bottleneck_likelihood": 0.25,
        }
        data = self._complete(
            system_prompt=(
                "You are a construction project analyst. Predict how many calendar days "
                "the task needs and what could delay it.\n\n"
                "RULES:\n"
                "1. days_to_complete is a whole number of at least 1.\n"
                "2. Scores are between 0.0 and 1.0.\n"
                "3. Return ONLY valid JSON. No markdown, no commentary.\n"
                f"4. The output must strictly follow this schema: {json.dumps(schema)}"
            ),
            user_content=(
                f"Site context: {json.dumps(context.to_dict(), sort_keys=True)}\n"
                f"Task: {json.dumps(task.to_dict(), sort_keys=True)}"
            ),
        )

        try:
            days = max(1, int(data["days_to_complete"]))
        except (KeyError, TypeError, ValueError):
            raise ProviderResponseError("Missing or invalid days_to_complete in response")

        risk_factors = tuple(str(r) for r in data.get("risk_factors") or [])
        return TaskPrediction(
            predicted_completion=self._clock() + datetime.timedelta(days=days),
            risk_factors=risk_factors,
            recommended_actions=tuple(str(a) for a in data.get("recommended_actions") or []),
            confidence_score=_clamp(data.get("confidence_score")),
            bottleneck_likelihood=_clamp(data.get("bottleneck_likelihood")),
        )

    def resolve_conflict(
        self,
        local_update: Mapping[str, Any],
        remote_update: Mapping[str, Any],
        original_task: Task,
    ) -> Optional[ConflictResolution]:
        if not self._ready():
            return None

        schema = {
            "resolved_fields": {"stage": "in-progress"},
            "reasoning": "Used most advanced stage.",
            "confidence": 0.8,
            "requires_manual_review": False,
        }
        data = self._complete(
            system_prompt=(
                "You merge two concurrent edits made to the same construction task.\n\n"
                "RULES:\n"
                "1. Never drop a safety note.\n"
                "2. Never move a task back to an earlier stage.\n"
                "3. Flag disagreements you cannot settle with requires_manual_review.\n"
                "4. Return ONLY valid JSON. No markdown, no commentary.\n"
                f"5. The output must strictly follow this schema: {json.dumps(schema)}"
            ),
            user_content=(
                f"Original task: {json.dumps(original_task.to_dict(), sort_keys=True)}\n"
                f"Local edit: {json.dumps(dict(local_update), sort_keys=True, default=str)}\n"
                f"Remote edit: {json.dumps(dict(remote_update), sort_keys=True, default=str)}"
            ),
        )

        fields = data.get("resolved_fields")
        if not isinstance(fields, dict):
            raise ProviderResponseError("Missing resolved_fields in response")

        resolved = original_task.as_patch()
        for name, value in fields.items():
            # The record identity is never up for negotiation
            if name in TASK_FIELDS and name != "id":
                resolved[name] = value

        return ConflictResolution(
            resolved_task=resolved,
            reasoning=str(data.get("reasoning") or "AI merge"),
            confidence=_clamp(data.get("confidence"), default=0.5),
            requires_manual_review=bool(data.get("requires_manual_review", False)),
        )

    # -----------------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------------

    def _ready(self) -> bool:
        if not self.is_configured or self.client is None:
            logger.debug(f"OpenAIDecisionProvider not configured: {self.configuration_error}")
            return False
        return True

    def _complete(self, system_prompt: str, user_content: str) -> Dict[str, Any]:
        """
        Runs one JSON-mode completion and returns the decoded object.

        Raises:
            ProviderUnavailableError: The API call failed.
            ProviderResponseError: The answer was empty or not a JSON object.
        """
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_content},
                ],
                temperature=self.DEFAULT_TEMPERATURE,
                max_tokens=self.DEFAULT_MAX_TOKENS,
                response_format={"type": "json_object"},
                timeout=self.timeout,
            )
        except AuthenticationError as e:
            logger.error(f"OpenAI authentication failed: {e}")
            raise ProviderUnavailableError("AUTH_ERROR") from e
        except RateLimitError as e:
            logger.warning(f"OpenAI rate limit exceeded: {e}")
            raise ProviderUnavailableError("RATE_LIMIT") from e
        except APITimeoutError as e:
            logger.warning(f"OpenAI API timeout: {e}")
            raise ProviderUnavailableError("TIMEOUT") from e
        except APIConnectionError as e:
            logger.error(f"OpenAI connection error: {e}")
            raise ProviderUnavailableError("CONNECTION_ERROR") from e
        except APIStatusError as e:
            logger.error(f"OpenAI API status error: {e.status_code} - {e}")
            raise ProviderUnavailableError(f"API_ERROR_{e.status_code}") from e
        except OpenAIError as e:
            logger.error(f"OpenAI client error: {e}")
            raise ProviderUnavailableError("CLIENT_ERROR") from e

        raw_content: str = response.choices[0].message.content or ""
        logger.debug(f"OpenAIDecisionProvider: Raw response: {raw_content[:200]}...")

        if not raw_content:
            raise ProviderResponseError("Empty response from AI")
        try:
            data = json.loads(raw_content)
        except json.JSONDecodeError as e:
            raise ProviderResponseError("AI returned invalid JSON response") from e
        if not isinstance(data, dict):
            raise ProviderResponseError("AI response is not a JSON object")
        return data

    def health_check(self) -> Dict[str, Any]:
        return {
            "is_configured": self.is_configured,
            "model": self.model,
            "timeout": self.timeout,
            "configuration_error": self.configuration_error,
        }
