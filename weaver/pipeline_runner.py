"""Pipeline runner chaining the five story weaving steps in-process.

Each step module exposes ``run_stepN``; the runner validates the submission,
resolves the persona, calls the steps in order, reports progress to an optional
callback and wraps the story graph with run statistics.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from utils.validation import merge_config, validate_config, validate_story_input

from .errors import DegenerateInputWarning
from .events import ProgressCallback, emit_progress
from .generation import build_generator
from .models import Chunk, Choice, Consequence, DecisionPoint, Scene, StoryGraph
from .personas import age_bands, persona_keys, recommend_persona


logger = logging.getLogger(__name__)


@dataclass
class StoryInput:
    text: str
    title: str
    author: str = ""
    target_age: str = "8-10"
    persona: str = ""
    genre: str = ""


@dataclass
class PipelineResult:
    title: str
    author: str
    target_age: str
    persona: str
    genre: str
    cache_key: str
    chunks: List[Chunk]
    decision_points: List[DecisionPoint]
    scenes: List[Scene]
    choices: List[Choice]
    consequences: Dict[str, Consequence]
    graph: StoryGraph
    warnings: List[DegenerateInputWarning] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        story = self.graph.to_story_dict()
        story.update({
            "title": self.title,
            "author": self.author,
            "targetAge": self.target_age,
            "persona": self.persona,
            "genre": self.genre,
            "cacheKey": self.cache_key,
            "stats": self.stats,
            "warnings": [w.to_dict() for w in self.warnings],
        })
        return story


def cache_key(story_input: StoryInput, persona_key: str, config: Dict[str, Any]) -> str:
    """SHA-256 over the text, age band, persona and the settings that shape output."""
    settings = {section: values for section, values in config.items() if section != "paths"}
    payload = json.dumps(
        {
            "text": story_input.text,
            "target_age": story_input.target_age,
            "persona": persona_key,
            "config": settings,
        },
        sort_keys=True,
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class StoryPipeline:
    def __init__(self, config: Optional[Dict[str, Any]] = None, generator=None,
                 on_progress: Optional[ProgressCallback] = None):
        self.config = validate_config(merge_config(config))
        self.generator = generator
        self.on_progress = on_progress

    def resolve_persona(self, story_input: StoryInput) -> str:
        if story_input.persona:
            return story_input.persona
        persona_key = recommend_persona(story_input.genre, story_input.target_age)
        logger.info(f"No persona given; recommended '{persona_key}' for "
                    f"genre '{story_input.genre}' and ages {story_input.target_age}")
        return persona_key

    def run(self, story_input: StoryInput) -> PipelineResult:
        """Run step1~step5 for one story submission."""
        from step1_chunk_text import run_step1
        from step2_detect_decisions import distribution_stats, run_step2
        from step3_synthesize_choices import run_step3
        from step4_map_consequences import run_step4
        from step5_converge_paths import run_step5

        validate_story_input(story_input, age_bands(), persona_keys())
        persona_key = self.resolve_persona(story_input)
        key = cache_key(story_input, persona_key, self.config)
        cfg = self.config
        start_time = time.time()
        warnings: List[DegenerateInputWarning] = []

        generator = self.generator
        if generator is None:
            generator = build_generator(cfg)

        emit_progress(self.on_progress, "chunking", "start")
        chunks, stage_warnings = run_step1(cfg, story_input.text)
        warnings.extend(stage_warnings)
        emit_progress(self.on_progress, "chunking", "complete", {"chunks": len(chunks)})

        emit_progress(self.on_progress, "detection", "start")
        points, stage_warnings = run_step2(cfg, chunks)
        warnings.extend(stage_warnings)
        emit_progress(self.on_progress, "detection", "complete", {"decision_points": len(points)})

        emit_progress(self.on_progress, "synthesis", "start")
        scenes, choices, stage_warnings, fallbacks = run_step3(
            cfg, chunks, points, story_input.target_age, persona_key, generator=generator,
        )
        warnings.extend(stage_warnings)
        emit_progress(self.on_progress, "synthesis", "complete",
                      {"scenes": len(scenes), "choices": len(choices)})

        emit_progress(self.on_progress, "consequences", "start")
        consequences = run_step4(cfg, choices, persona_key)
        emit_progress(self.on_progress, "consequences", "complete",
                      {"consequences": len(consequences)})

        emit_progress(self.on_progress, "convergence", "start")
        graph = run_step5(cfg, scenes, choices, consequences, chunks)
        emit_progress(self.on_progress, "convergence", "complete", {
            "nodes": len(graph.nodes),
            "edges": len(graph.edges),
            "convergence_points": len(graph.convergence_points),
        })

        stats: Dict[str, Any] = {
            "words": len(story_input.text.split()),
            "chunks": len(chunks),
            "decision_points": len(points),
            "distribution": distribution_stats(points),
            "scenes": len(scenes),
            "choices": len(choices),
            "consequences": len(consequences),
            "nodes": len(graph.nodes),
            "edges": len(graph.edges),
            "convergence_points": len(graph.convergence_points),
            "longest_path": graph.longest_path_length(),
            "generator_fallbacks": fallbacks,
            "elapsed_s": round(time.time() - start_time, 2),
        }
        logger.info(f"Story pipeline finished: {stats}")

        return PipelineResult(
            title=story_input.title,
            author=story_input.author,
            target_age=story_input.target_age,
            persona=persona_key,
            genre=story_input.genre,
            cache_key=key,
            chunks=chunks,
            decision_points=points,
            scenes=scenes,
            choices=choices,
            consequences=consequences,
            graph=graph,
            warnings=warnings,
            stats=stats,
        )
