# utils/yaml_loader.py
from __future__ import annotations

from typing import Any

import structlog
import yaml

logger = structlog.get_logger(__name__)


def normalize_keys_recursive(data: Any) -> Any:
    """Lower-case dictionary keys and replace spaces with underscores, recursively.

    Manifest authors may write ``Max Tokens`` or ``max_tokens``; both end up
    as ``max_tokens``.
    """
    if isinstance(data, dict):
        return {
            str(key).strip().lower().replace(" ", "_"): normalize_keys_recursive(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [normalize_keys_recursive(item) for item in data]
    return data


def load_yaml_file(filepath: str, normalize_keys: bool = True) -> dict[str, Any] | None:
    """
    Loads and parses a YAML file.

    Args:
        filepath: Path to the YAML file.
        normalize_keys: Whether to recursively normalize dictionary keys.

    Returns:
        The mapping at the root of the file, ``{}`` for an empty file, or
        ``None`` if the file is missing, unparseable or not a mapping.
    """
    if not filepath.endswith((".yaml", ".yml")):
        logger.error(f"File specified is not a YAML file: {filepath}")
        return None
    try:
        with open(filepath, encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except FileNotFoundError:
        logger.warning(f"YAML file '{filepath}' not found.")
        return None
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML file {filepath}: {e}", exc_info=True)
        return None

    if content is None:
        return {}
    if not isinstance(content, dict):
        logger.error(
            f"YAML file {filepath} must have a mapping as its root element.",
            parsed_type=type(content).__name__,
        )
        return None
    return normalize_keys_recursive(content) if normalize_keys else content
