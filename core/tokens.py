# core/tokens.py
"""Token estimators.

The default character-ratio estimator approximates ``ceil(len / 4)``; tier
budgets, cached costs and reduction reports are all measured with it.
:class:`TiktokenEstimator` gives real counts when tiktoken is usable.
"""

from __future__ import annotations

import functools
import math
from typing import Protocol

import structlog
import tiktoken

from config import settings

logger = structlog.get_logger(__name__)


class TokenEstimator(Protocol):
    name: str

    def estimate(self, text: str) -> int: ...


class CharRatioEstimator:
    """Approximates tokens as one per ``chars_per_token`` characters, rounded up."""

    name = "chars"

    def __init__(self, chars_per_token: float | None = None) -> None:
        self.chars_per_token = chars_per_token or settings.FALLBACK_CHARS_PER_TOKEN

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)


@functools.lru_cache(maxsize=settings.TOKENIZER_CACHE_SIZE)
def _get_tokenizer(model_name: str) -> tiktoken.Encoding | None:
    """Return a tiktoken encoder for ``model_name`` or the default encoding."""
    try:
        try:
            encoder = tiktoken.encoding_for_model(model_name)
        except KeyError:
            logger.debug(
                "No direct tiktoken encoding; using default",
                model=model_name,
                encoding=settings.TIKTOKEN_DEFAULT_ENCODING,
            )
            encoder = tiktoken.get_encoding(settings.TIKTOKEN_DEFAULT_ENCODING)
        return encoder
    except Exception as exc:  # tiktoken may need to download encodings
        logger.error(
            "Tokenizer unavailable; falling back to character heuristic",
            model=model_name,
            error=str(exc),
        )
        return None


class TiktokenEstimator:
    """Counts tokens with tiktoken, falling back to the character heuristic."""

    name = "tiktoken"

    def __init__(self, model_name: str | None = None) -> None:
        self.model_name = model_name or settings.DEFAULT_MODEL
        self._fallback = CharRatioEstimator()

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        encoder = _get_tokenizer(self.model_name)
        if encoder is None:
            return self._fallback.estimate(text)
        return len(encoder.encode(text, allowed_special="all"))


_ESTIMATORS: dict[str, type] = {
    CharRatioEstimator.name: CharRatioEstimator,
    TiktokenEstimator.name: TiktokenEstimator,
}


def get_token_estimator(name: str | None = None) -> TokenEstimator:
    """Return the estimator registered under ``name`` (default from settings)."""
    key = (name or settings.TOKEN_ESTIMATOR).lower()
    try:
        return _ESTIMATORS[key]()
    except KeyError:
        raise ValueError(f"Unknown token estimator '{key}'") from None


@functools.lru_cache(maxsize=1)
def _default_estimator() -> TokenEstimator:
    return get_token_estimator()


def estimate_tokens(text: str) -> int:
    """Estimate tokens for ``text`` with the configured default estimator."""
    return _default_estimator().estimate(text)
