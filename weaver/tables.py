"""Static lookup tables loaded from the YAML files in weaver/data.

Category patterns, choice templates, consequence descriptors and personas all
live in data files so they can be extended without touching control flow.
Each loader validates its table and raises ConfigError on malformed content.
"""
import logging
import os
import re
from dataclasses import dataclass, fields
from functools import lru_cache
from typing import Dict, List, Pattern, Tuple

import yaml

from .errors import ConfigError
from .models import EmotionalTone, SceneModifier


logger = logging.getLogger(__name__)

DATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data")

MODIFIER_FIELDS = {f.name for f in fields(SceneModifier)}


@dataclass(frozen=True)
class DecisionCategory:
    name: str
    weight: float
    patterns: Tuple[Tuple[str, Pattern], ...]
    examples: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DecisionPatternTable:
    categories: Tuple[DecisionCategory, ...]
    generic_name: str
    generic_weight: float
    choice_cues: Tuple[Pattern, ...]


@dataclass(frozen=True)
class ChoiceTemplate:
    text: str
    type: str
    weight: float = 1.0


@dataclass(frozen=True)
class ConsequenceTemplate:
    text: str
    consequence_type: str
    emotional_tone: EmotionalTone
    modifier: SceneModifier


def _load_yaml(filename):
    """Load one data file from the package data directory."""
    file_path = os.path.join(DATA_DIR, filename)
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        logger.error(f"Lookup table {file_path} not found", exc_info=True)
        raise ConfigError(f"lookup table not found: {file_path}")
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse {file_path}: {e}", exc_info=True)
        raise ConfigError(f"failed to parse {file_path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"{filename} must contain a mapping")
    return data


def _compile(pattern, source):
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        raise ConfigError(f"invalid pattern in {source}: {pattern!r} ({e})")


@lru_cache(maxsize=None)
def get_decision_patterns() -> DecisionPatternTable:
    data = _load_yaml("decision_patterns.yaml")

    categories = []
    for entry in data.get("categories") or []:
        name = str(entry.get("name", "")).strip()
        patterns = entry.get("patterns") or []
        if not name or not patterns:
            raise ConfigError("every decision category needs a name and patterns")
        categories.append(DecisionCategory(
            name=name,
            weight=float(entry.get("weight", 1.0)),
            patterns=tuple((p, _compile(p, name)) for p in patterns),
            examples=tuple(entry.get("examples") or ()),
        ))

    generic = data.get("generic_category") or {}
    cues = tuple(_compile(p, "choice_cues") for p in data.get("choice_cues") or [])
    if not categories or not cues:
        raise ConfigError("decision_patterns.yaml needs categories and choice_cues")

    return DecisionPatternTable(
        categories=tuple(categories),
        generic_name=str(generic.get("name", "General Choice Point")),
        generic_weight=float(generic.get("weight", 1.0)),
        choice_cues=cues,
    )


@lru_cache(maxsize=None)
def get_choice_templates() -> Tuple[str, Dict[str, Tuple[ChoiceTemplate, ...]]]:
    """Return (fallback category, templates keyed by category)."""
    data = _load_yaml("choice_templates.yaml")
    fallback = str(data.get("fallback_category", "General Choice Point"))

    templates: Dict[str, Tuple[ChoiceTemplate, ...]] = {}
    for category, entries in (data.get("templates") or {}).items():
        items = tuple(
            ChoiceTemplate(
                text=str(item["text"]),
                type=str(item["type"]),
                weight=float(item.get("weight", 1.0)),
            )
            for item in entries or []
        )
        if len(items) < 2:
            raise ConfigError(f"category '{category}' needs at least 2 choice templates")
        templates[category] = items

    if fallback not in templates:
        raise ConfigError(f"fallback category '{fallback}' has no templates")
    return fallback, templates


def _build_consequence(entry, source) -> ConsequenceTemplate:
    tone_value = str(entry.get("emotional_tone", "neutral"))
    try:
        tone = EmotionalTone(tone_value)
    except ValueError:
        raise ConfigError(f"unknown emotional tone '{tone_value}' in {source}")

    raw_modifier = entry.get("modifier") or {}
    unknown = set(raw_modifier) - MODIFIER_FIELDS
    if unknown:
        raise ConfigError(f"unknown modifier fields {sorted(unknown)} in {source}")

    return ConsequenceTemplate(
        text=str(entry.get("text", "")),
        consequence_type=str(entry.get("consequence_type", "neutral_development")),
        emotional_tone=tone,
        modifier=SceneModifier(**{k: float(v) for k, v in raw_modifier.items()}),
    )


@lru_cache(maxsize=None)
def get_consequence_table() -> Tuple[ConsequenceTemplate, Dict[str, ConsequenceTemplate]]:
    """Return (neutral default, descriptors keyed by choice type)."""
    data = _load_yaml("consequences.yaml")
    default = _build_consequence(data.get("default") or {}, "default")
    types = {
        str(choice_type): _build_consequence(entry or {}, choice_type)
        for choice_type, entry in (data.get("types") or {}).items()
    }
    return default, types


@lru_cache(maxsize=None)
def get_persona_table() -> Dict:
    data = _load_yaml("personas.yaml")
    if not data.get("personas"):
        raise ConfigError("personas.yaml defines no personas")
    if data.get("default_persona") not in data["personas"]:
        raise ConfigError("default_persona must name a defined persona")
    return data


def check_type_vocabulary() -> List[str]:
    """Return choice types that have no consequence descriptor."""
    _, templates = get_choice_templates()
    _, consequences = get_consequence_table()
    missing = []
    for entries in templates.values():
        for template in entries:
            if template.type not in consequences and template.type not in missing:
                missing.append(template.type)
    return missing
