"""
Configuration Validator
-----------------------
Rejects YAML sections that carry keys the config dataclasses do not define,
so a misspelt option (`captial: 10`) is an error rather than a silent default.
"""

from __future__ import annotations

from dataclasses import fields, is_dataclass
from typing import Any, Dict, Type, get_type_hints


def validate_keys(
    raw_config: Dict[str, Any], data_class: Type[Any], path: str = ""
) -> None:
    """
    Walks `raw_config` alongside the `data_class` schema.

    Args:
        raw_config (Dict[str, Any]): Parsed config section.
        data_class (Type[Any]): Dataclass the section must fit.
        path (str, optional): Dotted location of the section, used in the error.

    Raises:
        ValueError: On the first section holding keys the schema lacks.
    """
    known = sorted(f.name for f in fields(data_class))
    extra = sorted(set(raw_config) - set(known))
    if extra:
        where = path or "root"
        raise ValueError(
            f"Config Error: Unknown keys detected at '{where}': {extra}. "
            f"Allowed keys: {known}"
        )

    # Postponed annotations arrive as strings.
    hints = get_type_hints(data_class)
    for name, section in raw_config.items():
        schema = hints.get(name)
        if isinstance(section, dict) and isinstance(schema, type) and is_dataclass(schema):
            validate_keys(section, schema, f"{path}.{name}" if path else name)
