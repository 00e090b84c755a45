"""Complexity scoring, context compression and adaptive tier selection."""

from .adaptive_selector import AdaptiveContextSelector
from .complexity_analyzer import ComplexityAnalyzer
from .context_compressor import TIER_CAPS, ContextCompressor
from .learning import TierLearningTable

__all__ = [
    "AdaptiveContextSelector",
    "ComplexityAnalyzer",
    "ContextCompressor",
    "TIER_CAPS",
    "TierLearningTable",
]
