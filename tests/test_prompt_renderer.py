# tests/test_prompt_renderer.py
import prompt_renderer
from jinja2 import DictLoader, Environment
from models.complexity_models import ContextTier
from models.context_models import CoreFacts, OptimizedContext
from pydantic import BaseModel


class Person(BaseModel):
    name: str
    nickname: str | None = None


def test_render_prompt_with_custom_env(monkeypatch):
    env = Environment(loader=DictLoader({"greet.j2": "Hello {{ name }}"}), autoescape=False)
    monkeypatch.setattr(prompt_renderer, "_env", env)
    assert prompt_renderer.render_prompt("greet.j2", {"name": "Bob"}) == "Hello Bob"


def test_tojson_handles_models_dataclasses_and_enums():
    assert prompt_renderer._tojson(Person(name="Alice")) == '{"name": "Alice"}'
    assert prompt_renderer._tojson(ContextTier.FULL) == '"full"'
    context = OptimizedContext(tier=ContextTier.MINIMAL, core_facts=CoreFacts(genre="noir"))
    assert '"genre": "noir"' in prompt_renderer._tojson(context)


def test_general_template_passes_prompt_through():
    assert prompt_renderer.render_prompt("general.j2", {"prompt": "Say hi"}) == "Say hi"


def test_story_foundation_template():
    text = prompt_renderer.render_prompt(
        "story_foundation.j2",
        {"genre": "mystery", "premise": "A locked room", "title": None},
    )
    assert "mystery" in text
    assert "Premise: A locked room" in text
    assert "Working title" not in text
