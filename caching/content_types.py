# caching/content_types.py
"""Per-content-type caching policy for the durable cache."""

from __future__ import annotations

from dataclasses import dataclass

DAY_SECONDS = 24 * 60 * 60
DEFAULT_REUSE_SCORE = 5.0


@dataclass(frozen=True)
class ContentTypePolicy:
    token_cost: float
    ttl_days: float
    similarity_threshold: float
    max_entries: int
    reuse_factor: float = DEFAULT_REUSE_SCORE

    @property
    def ttl_seconds(self) -> float:
        return self.ttl_days * DAY_SECONDS

    @property
    def reuse_score(self) -> float:
        return min(10.0, max(0.0, self.reuse_factor))


def _p(
    cost: float, ttl: float, threshold: float, max_entries: int, reuse: float = DEFAULT_REUSE_SCORE
) -> ContentTypePolicy:
    return ContentTypePolicy(cost, ttl, threshold, max_entries, reuse)


CONTENT_TYPE_POLICIES: dict[str, ContentTypePolicy] = {
    # foundation family
    "story_foundation": _p(8, 30, 0.75, 200, 5.0),
    "main_characters": _p(2, 21, 0.70, 1000, 7.0),
    "setting": _p(1.5, 21, 0.65, 400, 8.0),
    "plot_structure": _p(2, 14, 0.75, 300, 6.0),
    "themes": _p(1, 30, 0.60, 600, 9.0),
    "tone": _p(0.5, 14, 0.65, 200),
    "target_audience": _p(0.5, 30, 0.80, 100),
    "chapter_outline": _p(2, 7, 0.70, 400, 4.0),
    # chapter family
    "chapter_content": _p(5, 3, 0.75, 1000, 3.0),
    "chapter_summary": _p(1, 7, 0.80, 500),
    "key_events": _p(0.5, 5, 0.75, 300),
    "character_development": _p(1, 10, 0.80, 400),
    "foreshadowing": _p(0.5, 3, 0.70, 200),
    # improvements
    "improvement_general": _p(3, 2, 0.85, 200),
    "improvement_dialogue": _p(2, 3, 0.80, 200),
    "improvement_description": _p(2, 3, 0.80, 200),
    "improvement_pacing": _p(2, 2, 0.85, 200),
    "improvement_character": _p(2, 5, 0.80, 200),
    "improvement_plot": _p(3, 2, 0.85, 200),
    "improvement_style": _p(2, 7, 0.75, 200, 7.0),
    "improvement_grammar": _p(1, 1, 0.90, 200),
    # analysis
    "analysis_comprehensive": _p(3, 5, 0.75, 100),
    "analysis_style": _p(2, 10, 0.80, 100),
    "analysis_structure": _p(2, 7, 0.80, 100),
    "analysis_quality": _p(2, 3, 0.75, 100),
    "analysis_readability": _p(1, 14, 0.85, 100),
    "analysis_genre": _p(1, 21, 0.70, 100, 8.0),
    # export
    "export_pdf": _p(1, 14, 0.95, 50),
    "export_epub": _p(1, 14, 0.95, 50),
    "export_docx": _p(1, 14, 0.95, 50),
    "export_txt": _p(0.5, 7, 0.95, 50),
    # free-form requests
    "general": _p(1, 1, 0.90, 500),
}

DEFAULT_POLICY = CONTENT_TYPE_POLICIES["general"]

# Durable content type written through for each batch operation type.
OPERATION_CONTENT_TYPES: dict[str, str] = {
    "story_foundation": "story_foundation",
    "chapter": "chapter_content",
    "content_improvement": "improvement_general",
    "content_analysis": "analysis_comprehensive",
    "general": "general",
}


def get_policy(content_type: str) -> ContentTypePolicy:
    return CONTENT_TYPE_POLICIES.get(content_type, DEFAULT_POLICY)


def reuse_score_for(content_type: str) -> float:
    return get_policy(content_type).reuse_score
