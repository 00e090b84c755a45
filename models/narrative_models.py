# models/narrative_models.py
"""Accumulated narrative state supplied by callers."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class RelationshipModel(BaseModel):
    character: str
    type: str = "acquaintance"


class CharacterProfile(BaseModel):
    name: str
    description: str = ""
    relationships: list[RelationshipModel] = []


class PriorChapter(BaseModel):
    """A chapter that has already been written."""

    number: int
    title: str = ""
    summary: str = ""
    content: str = ""

    def source_text(self) -> str:
        return self.content or self.summary


class PlotStructure(BaseModel):
    model_config = ConfigDict(extra="allow")

    inciting_incident: str = ""


class Foundation(BaseModel):
    """Story foundation: premise, plot structure and themes."""

    model_config = ConfigDict(extra="allow")

    title: str = ""
    premise: str = ""
    plot_structure: PlotStructure | None = None
    themes: list[str] = []


class NarrativeState(BaseModel):
    """Everything known about the story before the next chapter is written."""

    model_config = ConfigDict(extra="allow")

    genre: str = "unknown"
    setting_description: str = ""
    protagonist: str = ""
    characters: list[CharacterProfile] = []
    previous_chapters: list[PriorChapter] = []
    foundation: Foundation | None = None

    def protagonist_name(self) -> str:
        if self.protagonist:
            return self.protagonist
        if self.characters:
            return self.characters[0].name
        return "protagonist"

    def full_text(self) -> str:
        """Uncompressed rendering of the state, used for reduction reports."""
        parts = [f"Genre: {self.genre}", self.setting_description]
        for character in self.characters:
            parts.append(f"{character.name}: {character.description}")
            for rel in character.relationships:
                parts.append(f"{character.name} -> {rel.character}: {rel.type}")
        for chapter in self.previous_chapters:
            parts.append(f"Chapter {chapter.number}: {chapter.source_text()}")
        if self.foundation:
            parts.append(self.foundation.premise)
        return "\n".join(part for part in parts if part)
