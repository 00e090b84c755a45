# orchestration/operation_executor.py
"""Turns a :class:`BatchOperation` into a prompt and a generation call."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog
from pydantic import ValidationError

from context_optimization.adaptive_selector import AdaptiveContextSelector
from core.errors import GenerationErrorKind, NonRetryableGenerationError
from core.llm_interface import GenerationResult, LLMService
from models.batch_models import BatchOperation, OperationType
from models.complexity_models import ChapterPlan
from models.narrative_models import NarrativeState
from prompt_renderer import render_prompt

from .token_accountant import TokenAccountant

logger = structlog.get_logger(__name__)

DEFAULT_TARGET_WORD_COUNT = 2000


def _malformed(message: str) -> NonRetryableGenerationError:
    return NonRetryableGenerationError(
        message, kind=GenerationErrorKind.MALFORMED_REQUEST
    )


class GenerationOperationExecutor:
    """Callable used by the scheduler to run one operation attempt."""

    def __init__(
        self,
        llm: LLMService,
        selector: AdaptiveContextSelector | None = None,
        accountant: TokenAccountant | None = None,
    ) -> None:
        self.llm = llm
        self.selector = selector
        self.accountant = accountant or TokenAccountant()
        self._builders: dict[OperationType, Callable[[dict[str, Any]], str]] = {
            OperationType.STORY_FOUNDATION: self._foundation_prompt,
            OperationType.CHAPTER: self._chapter_prompt,
            OperationType.CONTENT_IMPROVEMENT: self._improvement_prompt,
            OperationType.CONTENT_ANALYSIS: self._analysis_prompt,
            OperationType.GENERAL: self._general_prompt,
        }

    async def __call__(self, op: BatchOperation) -> GenerationResult:
        prompt, system_prompt = self.build_prompt(op)
        params = op.params
        result = await self.llm.generate(
            prompt,
            system_prompt=system_prompt,
            model=params.get("model"),
            max_tokens=params.get("max_tokens"),
            temperature=params.get("temperature"),
        )
        self.accountant.record_usage(op.type, result.usage, result.cost)
        return result

    def build_prompt(self, op: BatchOperation) -> tuple[str, str]:
        """Return ``(prompt, system_prompt)`` for ``op``.

        Raises:
            NonRetryableGenerationError: the operation's parameters are unusable.
        """
        params = dict(op.params)
        if "system_prompt" in params:
            system_prompt = str(params["system_prompt"])
        else:
            system_prompt = render_prompt("system.j2", {"genre": params.get("genre")})
        return self._builders[op.type](params), system_prompt

    @staticmethod
    def _foundation_prompt(params: dict[str, Any]) -> str:
        if not params.get("premise"):
            raise _malformed("Story foundation requires a premise")
        return render_prompt(
            "story_foundation.j2",
            {
                "genre": params.get("genre", "general fiction"),
                "premise": params["premise"],
                "title": params.get("title"),
                "target_audience": params.get("target_audience"),
            },
        )

    def _chapter_prompt(self, params: dict[str, Any]) -> str:
        try:
            state = NarrativeState.model_validate(params.get("state") or {})
            plan = ChapterPlan.model_validate(params.get("plan") or {})
        except ValidationError as exc:
            raise _malformed(f"Invalid chapter parameters: {exc.error_count()} error(s)") from exc

        if self.selector is not None:
            adaptive = self.selector.get_adaptive_context(state, plan)
            tier, context = adaptive.tier.value, adaptive.context
            logger.info(
                "Chapter context selected",
                chapter=plan.chapter_number,
                tier=tier,
                tokens=adaptive.token_estimate,
                budget=adaptive.token_budget,
            )
        else:
            tier, context = "full", state

        return render_prompt(
            "chapter.j2",
            {
                "chapter_number": plan.chapter_number,
                "title": plan.title,
                "genre": state.genre,
                "story_title": params.get("story_title")
                or (state.foundation.title if state.foundation else ""),
                "tier": tier,
                "context": context,
                "purpose": plan.purpose or "advance the story",
                "key_events": plan.key_events,
                "target_word_count": params.get(
                    "target_word_count", DEFAULT_TARGET_WORD_COUNT
                ),
            },
        )

    @staticmethod
    def _improvement_prompt(params: dict[str, Any]) -> str:
        if not params.get("content"):
            raise _malformed("Content improvement requires content")
        return render_prompt(
            "content_improvement.j2",
            {
                "content": params["content"],
                "feedback": params.get("feedback") or "Tighten the prose.",
                "improvement_type": params.get("improvement_type"),
            },
        )

    @staticmethod
    def _analysis_prompt(params: dict[str, Any]) -> str:
        if not params.get("content"):
            raise _malformed("Content is required for analysis")
        return render_prompt(
            "content_analysis.j2",
            {"content": params["content"], "analysis_type": params.get("analysis_type")},
        )

    @staticmethod
    def _general_prompt(params: dict[str, Any]) -> str:
        return render_prompt("general.j2", {"prompt": params.get("prompt", "")})
