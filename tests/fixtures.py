"""Shared builders for story texts and configs used across the tests."""
from utils.validation import merge_config


FILLER = [
    "Mira walked along the sandy shore and counted the shells near the water.",
    "The wind carried the smell of salt across the small village.",
    "Her grandfather mended the nets while humming an old tune.",
    "Children laughed as they chased the waves back to the sea.",
    "The sun sank slowly behind the hills and painted the sky orange.",
]

EITHER_OR = "She could either sail to the island or stay home with her family."
FORK = "They reached a fork in the road near the old mill."
TIME_PRESSURE = "Time was running out for the little crew."
CUE_ONLY = "He would decide soon."


def filler(count, offset=0):
    return [FILLER[(offset + i) % len(FILLER)] for i in range(count)]


def paragraph(sentences):
    return " ".join(sentences)


def make_config(**sections):
    """Defaults with per-section overrides, e.g. make_config(pipeline={'workers': 2})."""
    return merge_config(sections)


def either_or_story():
    """Three paragraphs, about 600 words, one either/or sentence mid-story."""
    second = filler(18, offset=3)
    second.insert(9, EITHER_OR)
    return "\n\n".join([
        paragraph(filler(18)),
        paragraph(second),
        paragraph(filler(18, offset=1)),
    ])


def decision_story(paragraphs=6, per_paragraph=12):
    """Long story with a trigger sentence in the middle of every paragraph."""
    triggers = [EITHER_OR, FORK, TIME_PRESSURE]
    blocks = []
    for i in range(paragraphs):
        sentences = filler(per_paragraph, offset=i)
        sentences.insert(per_paragraph // 2, triggers[i % len(triggers)])
        blocks.append(paragraph(sentences))
    return "\n\n".join(blocks)
