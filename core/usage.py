# core/usage.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from config import settings


def calculate_cost(input_tokens: int, output_tokens: int) -> float:
    """Return the USD cost of a call with the configured per-token prices."""
    return (
        input_tokens * settings.INPUT_TOKEN_COST
        + output_tokens * settings.OUTPUT_TOKEN_COST
    )


@dataclass
class TokenUsage:
    """Generation token usage metrics."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self) -> None:
        if not self.total_tokens:
            self.total_tokens = self.input_tokens + self.output_tokens

    @classmethod
    def from_api(cls, usage: dict[str, Any] | None) -> TokenUsage:
        """Build usage from an OpenAI- or Anthropic-style usage mapping."""
        if not usage:
            return cls()
        input_tokens = usage.get("input_tokens", usage.get("prompt_tokens", 0)) or 0
        output_tokens = (
            usage.get("output_tokens", usage.get("completion_tokens", 0)) or 0
        )
        total = usage.get("total_tokens", 0) or 0
        return cls(int(input_tokens), int(output_tokens), int(total))

    def add(self, usage: TokenUsage | dict[str, int] | None) -> None:
        """Accumulate usage values from another instance or dictionary."""
        if not usage:
            return
        if isinstance(usage, TokenUsage):
            self.input_tokens += usage.input_tokens
            self.output_tokens += usage.output_tokens
            self.total_tokens += usage.total_tokens
        else:
            self.input_tokens += usage.get("input_tokens", 0)
            self.output_tokens += usage.get("output_tokens", 0)
            self.total_tokens += usage.get("total_tokens", 0)

    @property
    def cost(self) -> float:
        return calculate_cost(self.input_tokens, self.output_tokens)

    def to_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }

    def get_if_used(self) -> dict[str, int] | None:
        """Return usage dict only if any tokens were accumulated."""
        if self.input_tokens or self.output_tokens or self.total_tokens:
            return self.to_dict()
        return None
