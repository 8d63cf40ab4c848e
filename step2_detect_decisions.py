"""Step 2: Detect decision points in chunked text."""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from weaver.errors import DegenerateInputWarning
from weaver.models import CONFIDENCE_RANK, DecisionPoint
from weaver.tables import get_decision_patterns


logger = logging.getLogger(__name__)

STAGE = "detection"


def confidence_for(category_matched, cue_matched):
    if category_matched and cue_matched:
        return 'high'
    if category_matched:
        return 'medium'
    if cue_matched:
        return 'low'
    return 'none'


def distribution_stats(points):
    """Counts by category and confidence, plus average chunk spacing."""
    stats = {
        'total': len(points),
        'by_category': {},
        'by_confidence': {},
        'avg_spacing': 0.0,
    }
    for point in points:
        stats['by_category'][point.category] = stats['by_category'].get(point.category, 0) + 1
        stats['by_confidence'][point.confidence] = stats['by_confidence'].get(point.confidence, 0) + 1

    if len(points) > 1:
        spacing = sum(points[i].chunk_index - points[i - 1].chunk_index for i in range(1, len(points)))
        stats['avg_spacing'] = spacing / (len(points) - 1)

    return stats


class DecisionPointDetector:
    """Score sentences against weighted category patterns and choice cues."""

    def __init__(self, config):
        """Initialize with config."""
        self.config = config
        detection = config['decision_detection']
        self.min_confidence = detection['min_confidence']
        self.context_window = detection['context_window']
        self.max_points_per_chunk = detection['max_points_per_chunk']
        self.min_decision_points = detection['min_decision_points']
        self.max_decision_points = detection['max_decision_points']
        self.min_spacing = detection.get('min_spacing', 3)
        self.workers = max(1, int(config.get('pipeline', {}).get('workers', 1) or 1))
        self.table = get_decision_patterns()
        self.warnings = []

    def detect(self, chunks):
        """
        Detect decision points across all chunks.

        Returns:
            List of DecisionPoint sorted by (chunk index, sentence index)
        """
        self.warnings = []
        chunk_count = len(chunks)
        per_chunk = [[] for _ in chunks]

        if self.workers > 1 and chunk_count > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                futures = {
                    executor.submit(self._analyze_chunk, chunk, chunk_count): idx
                    for idx, chunk in enumerate(chunks)
                }
                for future in as_completed(futures):
                    idx = futures[future]
                    try:
                        per_chunk[idx] = future.result()
                    except Exception as e:
                        self._skip_chunk(chunks[idx], e)
        else:
            for idx, chunk in enumerate(chunks):
                try:
                    per_chunk[idx] = self._analyze_chunk(chunk, chunk_count)
                except Exception as e:
                    self._skip_chunk(chunk, e)

        points = [point for chunk_points in per_chunk for point in chunk_points]
        points = self.distribute(points)

        logger.info(f"Decision point detection completed: {len(points)} points, "
                    f"distribution {distribution_stats(points)}")
        return points

    def _skip_chunk(self, chunk, error):
        message = f"Skipped {chunk.id} during decision detection: {error}"
        logger.warning(message)
        self.warnings.append(DegenerateInputWarning(STAGE, message))

    def meets_threshold(self, confidence):
        return CONFIDENCE_RANK[confidence] >= CONFIDENCE_RANK[self.min_confidence]

    def classify(self, context):
        """
        Match a context window against the category table.

        Returns:
            tuple: (category name, weight, matched pattern, confidence)
        """
        cue_matched = any(cue.search(context) for cue in self.table.choice_cues)

        for category in self.table.categories:
            for source, pattern in category.patterns:
                if pattern.search(context):
                    return category.name, category.weight, source, confidence_for(True, cue_matched)

        if cue_matched:
            return self.table.generic_name, self.table.generic_weight, 'choice_cue', 'low'
        return None, 0.0, '', 'none'

    def _analyze_chunk(self, chunk, chunk_count):
        sentences = chunk.sentences
        total = len(sentences)
        points = []

        for i in range(chunk.overlap_sentences, total):
            start = max(0, i - self.context_window)
            context = " ".join(sentences[start:i + self.context_window + 1])

            category, weight, pattern, confidence = self.classify(context)
            if category is None or not self.meets_threshold(confidence):
                continue

            points.append(DecisionPoint(
                id=f"dp_{chunk.id}_{i}",
                chunk_id=chunk.id,
                chunk_index=chunk.index,
                sentence_index=i,
                sentence=sentences[i],
                category=category,
                category_weight=weight,
                confidence=confidence,
                matched_pattern=pattern,
                position=(chunk.index + i / total) / chunk_count,
                section_title=chunk.section_title,
                is_chapter_boundary=chunk.is_chapter_start or chunk.is_chapter_end,
            ))

        return self.limit(self.deduplicate(points))

    def deduplicate(self, points):
        """Keep points at least min_spacing sentences apart within a chunk."""
        kept = []
        for point in sorted(points, key=lambda p: p.sentence_index):
            if not kept or point.sentence_index - kept[-1].sentence_index >= self.min_spacing:
                kept.append(point)
            elif CONFIDENCE_RANK[point.confidence] > CONFIDENCE_RANK[kept[-1].confidence]:
                kept[-1] = point
        return kept

    def limit(self, points):
        if len(points) <= self.max_points_per_chunk:
            return points
        best = sorted(points, key=lambda p: p.score, reverse=True)[:self.max_points_per_chunk]
        return sorted(best, key=lambda p: p.sentence_index)

    def distribute(self, points):
        """Trim to max_decision_points by score; warn when below the minimum."""
        if len(points) < self.min_decision_points:
            message = (f"Too few decision points detected: {len(points)} "
                       f"(minimum {self.min_decision_points})")
            logger.warning(message)
            self.warnings.append(DegenerateInputWarning(STAGE, message))

        if len(points) > self.max_decision_points:
            points = sorted(points, key=lambda p: p.score, reverse=True)[:self.max_decision_points]

        return sorted(points, key=lambda p: (p.chunk_index, p.sentence_index))


def run_step2(config, chunks):
    """
    Run step 2: decision point detection.

    Returns:
        tuple: (decision points, warnings)
    """
    detector = DecisionPointDetector(config)
    points = detector.detect(chunks)
    return points, list(detector.warnings)
