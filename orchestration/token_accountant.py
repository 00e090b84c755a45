from __future__ import annotations

from collections.abc import Mapping
from enum import Enum

import structlog

from core.usage import TokenUsage
from models.batch_models import OperationType

logger = structlog.get_logger(__name__)


class TokenAccountant:
    """Accumulate generated tokens and spend per operation type."""

    def __init__(self) -> None:
        self.total: int = 0
        self.total_cost: float = 0.0
        self.operation_totals: dict[str, int] = {}
        self.operation_costs: dict[str, float] = {}

    @staticmethod
    def _name(operation: OperationType | str) -> str:
        return operation.value if isinstance(operation, Enum) else str(operation)

    def record_usage(
        self,
        operation: OperationType | str,
        usage: Mapping[str, int] | TokenUsage | None,
        cost: float = 0.0,
    ) -> None:
        """Record completion tokens (and optional cost) for an operation type."""
        name = self._name(operation)
        usage_dict = usage.to_dict() if isinstance(usage, TokenUsage) else dict(usage or {})
        completion = usage_dict.get("output_tokens", usage_dict.get("completion_tokens"))

        if isinstance(completion, int):
            self.total += completion
            self.operation_totals[name] = self.operation_totals.get(name, 0) + completion
            self.total_cost += cost
            self.operation_costs[name] = self.operation_costs.get(name, 0.0) + cost
            logger.info(
                f"Tokens from '{name}': {completion}. Total generated this run: {self.total}",
                cost=round(cost, 6),
            )
        elif isinstance(usage_dict.get("total_tokens"), int):
            logger.info(
                f"Total tokens from '{name}': {usage_dict['total_tokens']} "
                f"(completion tokens not reported). Total generated this run: {self.total}"
            )
        elif usage_dict:
            logger.warning(
                f"'{name}' usage has no integer completion count; tokens not added.",
                usage=usage_dict,
            )

    def get_operation_total(self, operation: OperationType | str) -> int:
        return self.operation_totals.get(self._name(operation), 0)

    def snapshot(self) -> dict[str, object]:
        return {
            "total_completion_tokens": self.total,
            "total_cost": self.total_cost,
            "by_operation": {
                name: {"completion_tokens": tokens, "cost": self.operation_costs.get(name, 0.0)}
                for name, tokens in self.operation_totals.items()
            },
        }
