"""Input, configuration and structure validation utilities."""
import copy
import re
from typing import Any, Dict, List

from utils.fuzzy_match import best_match
from utils.text_utils import extract_text_snippet
from weaver.errors import ConfigError, ValidationError
from weaver.models import CONFIDENCE_RANK
from weaver.tables import check_type_vocabulary


MIN_TEXT_LENGTH = 100
MIN_WORDS = 500
MAX_WORDS = 90000


DEFAULT_CONFIG = {
    'paths': {
        'input_file': 'data/input/story.txt',
        'output_dir': 'data/output',
        'log_dir': 'logs',
    },
    'text_chunking': {
        'max_chunk_size': 3000,
        'overlap_size': 200,
        'heading_patterns': [
            r'(?im)^chapter\s+\d+',
            r'(?im)^chapter\s+[ivxlcdm]+\b',
            r'(?im)^part\s+\d+',
            r'(?m)^\d+\.\s+[A-Z]',
            r'(?m)^[A-Z][A-Z\s]{2,}$',
        ],
    },
    'decision_detection': {
        'min_confidence': 'medium',
        'context_window': 1,
        'max_points_per_chunk': 3,
        'min_decision_points': 3,
        'max_decision_points': 15,
        'min_spacing': 3,
    },
    'choice_synthesis': {
        'max_choices_per_point': 2,
        'duplicate_threshold': 0.85,
    },
    'path_convergence': {
        'max_branch_depth': 3,
        'convergence_buffer': 2,
    },
    'pipeline': {
        'workers': 1,
    },
    'llm': {
        'enabled': False,
        'base_url': 'https://api.openai.com/v1',
        'api_key': '',
        'model': 'gpt-4o-mini',
        'timeout': 20,
        'max_retries': 2,
        'retry_delay': 1,
        'rate_limit_per_minute': 30,
        'temperature': 0.7,
    },
}


def merge_config(overrides=None):
    """Overlay user config sections on top of the defaults."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    for section, values in (overrides or {}).items():
        if isinstance(values, dict) and isinstance(config.get(section), dict):
            config[section].update(values)
        else:
            config[section] = values
    return config


def _require_int(config, section, key, minimum, maximum=None):
    value = config[section].get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{section}.{key} must be an integer, got {value!r}")
    if value < minimum or (maximum is not None and value > maximum):
        bound = f">= {minimum}" if maximum is None else f"in [{minimum}, {maximum}]"
        raise ConfigError(f"{section}.{key} must be {bound}, got {value}")
    return value


def validate_config(config):
    """
    Validate a merged configuration.

    Raises:
        ConfigError: on the first invalid field
    """
    required = ['paths', 'text_chunking', 'decision_detection', 'choice_synthesis',
                'path_convergence', 'pipeline', 'llm']
    missing = [section for section in required if not isinstance(config.get(section), dict)]
    if missing:
        raise ConfigError(f"Missing config sections: {', '.join(missing)}")

    max_chunk = _require_int(config, 'text_chunking', 'max_chunk_size', 1)
    overlap = _require_int(config, 'text_chunking', 'overlap_size', 0)
    if overlap >= max_chunk:
        raise ConfigError("text_chunking.overlap_size must be smaller than max_chunk_size")
    for pattern in config['text_chunking'].get('heading_patterns') or []:
        try:
            re.compile(pattern)
        except re.error as e:
            raise ConfigError(f"invalid heading pattern {pattern!r}: {e}")

    detection = config['decision_detection']
    if detection.get('min_confidence') not in CONFIDENCE_RANK:
        raise ConfigError(
            f"decision_detection.min_confidence must be one of {list(CONFIDENCE_RANK)}"
        )
    _require_int(config, 'decision_detection', 'context_window', 0)
    _require_int(config, 'decision_detection', 'max_points_per_chunk', 1)
    _require_int(config, 'decision_detection', 'min_spacing', 1)
    min_points = _require_int(config, 'decision_detection', 'min_decision_points', 0)
    max_points = _require_int(config, 'decision_detection', 'max_decision_points', 1)
    if max_points < min_points:
        raise ConfigError("decision_detection.max_decision_points must be >= min_decision_points")

    _require_int(config, 'choice_synthesis', 'max_choices_per_point', 2, 4)
    threshold = config['choice_synthesis'].get('duplicate_threshold')
    if not isinstance(threshold, (int, float)) or not 0 < threshold <= 1:
        raise ConfigError("choice_synthesis.duplicate_threshold must be in (0, 1]")

    _require_int(config, 'path_convergence', 'max_branch_depth', 1)
    _require_int(config, 'path_convergence', 'convergence_buffer', 0)
    _require_int(config, 'pipeline', 'workers', 1)

    llm = config['llm']
    if llm.get('enabled'):
        if not llm.get('base_url') or not llm.get('model'):
            raise ConfigError("llm.base_url and llm.model are required when llm.enabled is true")
        if not isinstance(llm.get('timeout'), (int, float)) or llm['timeout'] <= 0:
            raise ConfigError("llm.timeout must be a positive number")

    missing_types = check_type_vocabulary()
    if missing_types:
        raise ConfigError(f"choice types without consequence entries: {', '.join(missing_types)}")

    return config


def validate_story_input(story_input, known_age_bands, known_personas):
    """
    Validate a story submission before any stage runs.

    Raises:
        ValidationError: with a message suitable for showing to the submitter
    """
    text = story_input.text or ""
    if len(text.strip()) < MIN_TEXT_LENGTH:
        raise ValidationError(f"Story text must be at least {MIN_TEXT_LENGTH} characters")

    word_count = len(text.split())
    if word_count < MIN_WORDS:
        raise ValidationError(f"Story too short: {word_count} words (minimum {MIN_WORDS})")
    if word_count > MAX_WORDS:
        raise ValidationError(f"Story too long: {word_count} words (maximum {MAX_WORDS})")

    if not (story_input.title or "").strip():
        raise ValidationError("Story title is required")

    if story_input.target_age not in known_age_bands:
        raise ValidationError(
            f"Invalid target age '{story_input.target_age}'; "
            f"expected one of {', '.join(known_age_bands)}"
        )

    if story_input.persona and story_input.persona not in known_personas:
        suggestion, _ = best_match(story_input.persona, known_personas)
        hint = f" (did you mean '{suggestion}'?)" if suggestion else ""
        raise ValidationError(f"Unknown persona '{story_input.persona}'{hint}")


def check_chunks(raw_sentences, chunks, max_chunk_size, overlap_size) -> List[Dict[str, Any]]:
    """
    Check chunk integrity against the document's sentences.

    Returns:
        List of issues (empty when chunks are sound)
    """
    issues = []
    sentence_set = set(raw_sentences)

    for chunk in chunks:
        for sentence in chunk.sentences:
            if sentence not in sentence_set:
                issues.append({
                    'chunk_id': chunk.id,
                    'issue': 'split_sentence',
                    'message': f'Sentence not found in source: {extract_text_snippet(sentence, 40)}',
                })

        if len(chunk.sentences) > 1 and len(chunk.content) > max_chunk_size:
            issues.append({
                'chunk_id': chunk.id,
                'issue': 'too_long',
                'message': f'Chunk has {len(chunk.content)} chars (max {max_chunk_size})',
            })

        overlap = " ".join(chunk.sentences[:chunk.overlap_sentences])
        if len(overlap) > overlap_size:
            issues.append({
                'chunk_id': chunk.id,
                'issue': 'overlap_too_long',
                'message': f'Overlap of {len(overlap)} chars exceeds {overlap_size}',
            })

    for i, chunk in enumerate(chunks):
        if chunk.index != i:
            issues.append({
                'chunk_id': chunk.id,
                'issue': 'order',
                'message': f'Chunk index mismatch at position {i}',
            })

    return issues


def check_graph(graph, max_choices) -> List[str]:
    """
    Check structural invariants of a story graph.

    Returns:
        List of violation messages
    """
    errors = []
    adjacency = graph.successors()

    for edge in graph.edges:
        if edge.target not in adjacency:
            errors.append(f'Edge {edge.id} targets unknown node {edge.target}')
    if errors:
        return errors

    for node_id, targets in adjacency.items():
        if node_id == graph.ending_id:
            if targets:
                errors.append('Ending node must not have outgoing edges')
        elif not targets:
            errors.append(f'Node {node_id} is a dead end')
        elif node_id != graph.start_id and len(targets) > max_choices:
            errors.append(f'Node {node_id} has {len(targets)} choices (max {max_choices})')

    # Colors: 1 = on the current path, 2 = finished.
    state: Dict[str, int] = {}
    for root in adjacency:
        if root in state:
            continue
        state[root] = 1
        stack = [(root, iter(adjacency[root]))]
        while stack:
            node_id, targets = stack[-1]
            target = next(targets, None)
            if target is None:
                state[node_id] = 2
                stack.pop()
            elif state.get(target) == 1:
                errors.append(f'Cycle through {target}')
                return errors
            elif target not in state:
                state[target] = 1
                stack.append((target, iter(adjacency[target])))

    reaches_ending = set(graph.reaching(graph.ending_id))
    unreachable = [n for n in adjacency if n not in reaches_ending]
    for node_id in unreachable:
        errors.append(f'Node {node_id} cannot reach the ending')

    return errors
