"""Step 3: Summarize scenes and synthesize reader choices."""
import re
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Tuple
from utils.fuzzy_match import is_near_duplicate
from weaver.errors import DegenerateInputWarning, ExternalCallFailure
from weaver.generation import GuardedGenerator
from weaver.models import Choice, Scene
from weaver.personas import (
    adaptation_profile,
    age_band_profile,
    check_content,
    get_persona,
    simplify_vocabulary,
    style_choice_text,
)
from weaver.tables import get_choice_templates


logger = logging.getLogger(__name__)

STAGE = "synthesis"
SUMMARY_SENTENCES_BEFORE = 2
SIMPLE_SUMMARY_SENTENCES = 3
LONG_WORD = re.compile(r"\b\w{10,}\b")
LIST_MARKER = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")


@dataclass(frozen=True)
class Synthesis:
    summary: str
    choices: Tuple[Choice, ...]
    metadata: Dict[str, Any] = field(default_factory=dict)


def simplify_summary(text):
    """Shorten long words and break the text into at most three short sentences."""
    text = LONG_WORD.sub(lambda m: m.group(0)[:8], text)
    text = re.sub(r"[,;:]", ".", text)
    parts = [p.strip() for p in re.split(r"[.!?]+", text) if p.strip()]
    if not parts:
        return ""
    return ". ".join(parts[:SIMPLE_SUMMARY_SENTENCES]) + "."


def clean_generated_choice(text):
    line = next((l for l in text.splitlines() if l.strip()), "")
    line = LIST_MARKER.sub("", line).strip()
    return line.strip('"“”\'').strip()


class ChoiceSynthesizer:
    """Turn decision points into scenes with 2-4 choices each."""

    def __init__(self, config, generator=None):
        """Initialize with config and an optional generate_text(prompt, context) callable."""
        self.config = config
        self.max_choices = config['choice_synthesis']['max_choices_per_point']
        self.duplicate_threshold = config['choice_synthesis'].get('duplicate_threshold', 0.85)
        self.workers = max(1, int(config.get('pipeline', {}).get('workers', 1) or 1))
        self.fallback_category, self.templates = get_choice_templates()

        if generator is not None and not isinstance(generator, GuardedGenerator):
            generator = GuardedGenerator(generator, timeout=config['llm'].get('timeout', 20))
        self.generator = generator

        self._lock = threading.Lock()
        self.generator_fallbacks = 0
        self.warnings = []

    def _generate(self, prompt, context):
        if self.generator is None:
            return None
        try:
            return self.generator(prompt, context)
        except ExternalCallFailure as e:
            logger.error(f"Text generation failed, using template text: {e}")
            with self._lock:
                self.generator_fallbacks += 1
            return None

    def summarize(self, chunk, point, age_band, persona_key):
        """
        Summarize the lead-up to a decision point.

        Returns:
            tuple: (summary text, source) where source is 'generator' or 'template'
        """
        start = max(0, point.sentence_index - SUMMARY_SENTENCES_BEFORE)
        basis = " ".join(chunk.sentences[start:point.sentence_index + 1])

        summary, source = basis, 'template'
        if self.generator is not None:
            persona = get_persona(persona_key)
            profile = adaptation_profile(age_band, persona_key)
            prompt = (
                f"{persona['prompts']['summarize']} "
                f"Use {profile['vocabulary_level']} vocabulary and sentences of at most "
                f"{profile['max_sentence_length']} words."
            )
            generated = self._generate(prompt, basis)
            if generated:
                summary, source = generated, 'generator'

        if age_band_profile(age_band).get('simplify_summary'):
            summary = simplify_summary(summary)
        return summary, source

    def templates_for(self, category):
        templates = self.templates.get(category)
        if templates is None:
            templates = self.templates[self.fallback_category]
        return templates[:self.max_choices]

    def _template_text(self, template, age_band, persona_key):
        return simplify_vocabulary(style_choice_text(template.text, persona_key), age_band)

    def _choice_text(self, template, summary, accepted, age_band, persona_key):
        fallback = self._template_text(template, age_band, persona_key)
        if self.generator is None:
            return fallback, False

        persona = get_persona(persona_key)
        prompt = (
            f"{persona['prompts']['generate_choice']} "
            f"Rephrase this option for the scene: {template.text}"
        )
        generated = self._generate(prompt, summary)
        if not generated:
            return fallback, False

        text = simplify_vocabulary(clean_generated_choice(generated), age_band)
        if not text or is_near_duplicate(text, accepted, self.duplicate_threshold):
            logger.info(f"Generated choice rejected as empty or duplicate: {text!r}")
            with self._lock:
                self.generator_fallbacks += 1
            return fallback, False
        return text, True

    def synthesize(self, chunk, point, age_band, persona_key, scene_id):
        """
        Build the summary and choices for one decision point.

        Returns:
            Synthesis
        """
        summary, summary_source = self.summarize(chunk, point, age_band, persona_key)

        choices = []
        accepted = []
        generated_count = 0
        for k, template in enumerate(self.templates_for(point.category)):
            text, generated = self._choice_text(template, summary, accepted, age_band, persona_key)
            accepted.append(text)
            generated_count += int(generated)
            choices.append(Choice(
                id=f"choice_{scene_id}_{k}",
                scene_id=scene_id,
                text=text,
                type=template.type,
                weight=template.weight,
                category=point.category,
            ))

        issues = check_content(summary, age_band)
        for issue in issues:
            logger.warning(f"{scene_id}: {issue['message']} [{issue['type']}]")

        return Synthesis(
            summary=summary,
            choices=tuple(choices),
            metadata={
                'category': point.category,
                'confidence': point.confidence,
                'position': point.position,
                'sentence': point.sentence,
                'has_dialogue': chunk.has_dialogue,
                'summary_source': summary_source,
                'generated_choices': generated_count,
                'content_issues': issues,
            },
        )

    def build_scenes(self, chunks, points, age_band, persona_key):
        """
        Synthesize one scene per decision point, in decision point order.

        Returns:
            tuple: (scenes, choices)
        """
        self.warnings = []
        chunks_by_id = {chunk.id: chunk for chunk in chunks}
        results = [None] * len(points)

        def work(idx):
            point = points[idx]
            chunk = chunks_by_id.get(point.chunk_id)
            if chunk is None:
                raise KeyError(f"chunk {point.chunk_id} not found")
            return self.synthesize(chunk, point, age_band, persona_key, f"scene_{idx}")

        if self.workers > 1 and len(points) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                futures = {executor.submit(work, idx): idx for idx in range(len(points))}
                for future in as_completed(futures):
                    idx = futures[future]
                    try:
                        results[idx] = future.result()
                    except Exception as e:
                        self._skip_point(points[idx], e)
        else:
            for idx in range(len(points)):
                try:
                    results[idx] = work(idx)
                except Exception as e:
                    self._skip_point(points[idx], e)

        scenes = []
        choices = []
        for point, synthesis in zip(points, results):
            if synthesis is None:
                continue
            index = len(scenes)
            scene_id = f"scene_{index}"
            scene_choices = [
                replace(choice, id=f"choice_{scene_id}_{k}", scene_id=scene_id)
                for k, choice in enumerate(synthesis.choices)
            ]
            scenes.append(Scene(
                id=scene_id,
                decision_point_id=point.id,
                chunk_id=point.chunk_id,
                index=index,
                title=f"{point.section_title}: Scene {index + 1}",
                summary_text=synthesis.summary,
                metadata=synthesis.metadata,
            ))
            choices.extend(scene_choices)

        logger.info(f"Synthesized {len(scenes)} scenes with {len(choices)} choices "
                    f"(generator fallbacks: {self.generator_fallbacks})")
        return scenes, choices

    def _skip_point(self, point, error):
        message = f"Skipped decision point {point.id} during synthesis: {error}"
        logger.warning(message)
        self.warnings.append(DegenerateInputWarning(STAGE, message))


def run_step3(config, chunks, points, age_band, persona_key, generator=None):
    """
    Run step 3: scene summarization and choice synthesis.

    Returns:
        tuple: (scenes, choices, warnings, generator fallbacks)
    """
    synthesizer = ChoiceSynthesizer(config, generator=generator)
    scenes, choices = synthesizer.build_scenes(chunks, points, age_band, persona_key)
    return scenes, choices, list(synthesizer.warnings), synthesizer.generator_fallbacks
