# prompt_renderer.py
"""Render operation prompts from the Jinja2 templates in ``prompts/``."""

import dataclasses
import json
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader
from jinja2.utils import htmlsafe_json_dumps
from pydantic import BaseModel

PROMPTS_PATH = Path(__file__).parent / "prompts"
_env = Environment(
    loader=FileSystemLoader(PROMPTS_PATH),
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
)


def _default_json_serializer(value: Any) -> Any:
    """Serialize pydantic models, dataclasses and enums for JSON output."""
    if isinstance(value, BaseModel):
        return value.model_dump(exclude_none=True)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        to_dict = getattr(value, "to_dict", None)
        return to_dict() if callable(to_dict) else dataclasses.asdict(value)
    if isinstance(value, Enum):
        return value.value
    raise TypeError(
        f"Object of type {value.__class__.__name__} is not JSON serializable"
    )


def _dumps(obj: Any, **kwargs: Any) -> str:
    return json.dumps(obj, default=_default_json_serializer, **kwargs)


_env.policies["json.dumps_function"] = _dumps


def _tojson(value: Any, indent: int | None = None) -> str:
    """JSON filter that supports pydantic models and dataclasses."""
    dumps: Callable[..., str] = _dumps
    kwargs: dict[str, Any] = {}
    if indent is not None:
        kwargs["indent"] = indent
    return htmlsafe_json_dumps(value, dumps=dumps, **kwargs)


_env.filters["tojson"] = _tojson


def render_prompt(template_name: str, context: dict[str, Any]) -> str:
    """Render a Jinja2 template from the prompts directory."""
    template = _env.get_template(template_name)
    return template.render(**context)
