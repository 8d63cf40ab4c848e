"""Persona and age-band lookups used to style generated text."""
import re
from typing import Dict, List, Optional

from .tables import get_persona_table


AGE_CONTENT_PATTERNS = {
    "violence": re.compile(r"\b(kill|murder|blood|gore|violent|death)\b", re.IGNORECASE),
    "romance": re.compile(r"\b(kiss|love|romance|passionate)\b", re.IGNORECASE),
    "fear": re.compile(r"\b(terror|horrify|nightmare|scary|frightening)\b", re.IGNORECASE),
}
LONG_WORD_PATTERN = re.compile(r"\b\w{10,}\b")


def persona_keys() -> List[str]:
    return list(get_persona_table()["personas"].keys())


def age_bands() -> List[str]:
    return list(get_persona_table()["age_bands"].keys())


def get_persona(persona_key: Optional[str]) -> Dict:
    """Return the persona record, falling back to the default persona."""
    table = get_persona_table()
    personas = table["personas"]
    key = persona_key if persona_key in personas else table["default_persona"]
    return {"key": key, **personas[key]}


def list_personas() -> List[Dict[str, str]]:
    return [
        {
            "key": key,
            "name": persona.get("name", key),
            "archetype": persona.get("archetype", ""),
            "target_audience": persona.get("target_audience", ""),
        }
        for key, persona in get_persona_table()["personas"].items()
    ]


def age_band_profile(age_band: str) -> Dict:
    """Return the age-band record; unknown bands behave like the oldest band."""
    bands = get_persona_table()["age_bands"]
    if age_band in bands:
        return bands[age_band]
    return bands[list(bands.keys())[-1]]


def adaptation_profile(age_band: str, persona_key: Optional[str] = None) -> Dict:
    """Adaptation hints for text generation prompts."""
    band = age_band_profile(age_band)
    persona = get_persona(persona_key)
    return {
        "vocabulary_level": band.get("vocabulary_level", "moderate"),
        "max_sentence_length": band.get("max_sentence_length", 25),
        "concept_complexity": band.get("concept_complexity", "moderate"),
        "persona": persona.get("name", persona["key"]),
        "tone": persona.get("tone", ""),
        "style": persona.get("rules", {}).get("scene_summarization_style", ""),
    }


def recommend_persona(genre: Optional[str], age_band: str) -> str:
    """Pick a persona key for a genre and age band."""
    table = get_persona_table()
    min_age = int(age_band_profile(age_band).get("min_age", 10))

    if min_age <= 6:
        return "playful"

    genre_lower = str(genre or "").lower()
    for keyword, persona_key in (table.get("genre_personas") or {}).items():
        if keyword in genre_lower:
            return persona_key

    if min_age >= 12:
        return "classic"
    return table["default_persona"]


def _apply_replacements(text: str, replacements: Dict[str, str]) -> str:
    for source, target in (replacements or {}).items():
        text = re.sub(re.escape(source), target, text, flags=re.IGNORECASE)
    return text


def _apply_style(text: str, style: Dict) -> str:
    if not style:
        return text

    text = _apply_replacements(text, style.get("replacements"))

    skip_marker = style.get("skip_if_contains")
    if skip_marker and skip_marker.lower() in text.lower():
        return text

    if style.get("lowercase"):
        text = text.lower()
    return f"{style.get('prefix', '')}{text}{style.get('suffix', '')}"


def style_choice_text(text: str, persona_key: Optional[str]) -> str:
    return _apply_style(text, get_persona(persona_key).get("choice_style") or {})


def style_consequence_text(text: str, persona_key: Optional[str]) -> str:
    return _apply_style(text, get_persona(persona_key).get("consequence_style") or {})


def simplify_vocabulary(text: str, age_band: str) -> str:
    """Swap harder words for simpler ones when the age band asks for it."""
    if not age_band_profile(age_band).get("simplify_vocabulary"):
        return text
    return _apply_replacements(text, get_persona_table().get("vocabulary_simplifications"))


def check_content(text: str, age_band: str) -> List[Dict[str, str]]:
    """Flag content that may be too intense or complex for young readers."""
    issues = []
    if int(age_band_profile(age_band).get("min_age", 10)) > 8:
        return issues

    for issue_type, pattern in AGE_CONTENT_PATTERNS.items():
        if pattern.search(text or ""):
            issues.append({
                "type": issue_type,
                "severity": "high",
                "message": f"Content may be too intense for young readers ({age_band})",
            })

    if len(LONG_WORD_PATTERN.findall(text or "")) > 5:
        issues.append({
            "type": "vocabulary",
            "severity": "medium",
            "message": "Vocabulary may be too complex for target age",
        })
    return issues
