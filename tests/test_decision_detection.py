"""Tests for decision point detection (step 2)."""
import unittest

import step1_chunk_text as step1
import step2_detect_decisions as step2
from tests.fixtures import (
    CUE_ONLY,
    EITHER_OR,
    FORK,
    decision_story,
    either_or_story,
    filler,
    make_config,
    paragraph,
)
from weaver.models import Chunk


def _chunk(sentences, overlap=0, index=0):
    content = " ".join(sentences)
    return Chunk(
        id=f"chunk_{index}",
        index=index,
        section_index=0,
        section_title="Beginning",
        content=content,
        start_offset=0,
        end_offset=len(content),
        word_count=len(content.split()),
        sentences=tuple(sentences),
        overlap_sentences=overlap,
    )


class DecisionPointDetectorTests(unittest.TestCase):
    def test_either_or_is_high_confidence_moral_point(self):
        config = make_config()
        chunks, _ = step1.run_step1(config, either_or_story())
        points, warnings = step2.run_step2(config, chunks)

        self.assertEqual(len(points), 1)
        point = points[0]
        self.assertEqual(point.category, "Moral & Ethical Crossroads")
        self.assertEqual(point.confidence, "high")
        self.assertAlmostEqual(point.score, 4.5)
        chunk = next(c for c in chunks if c.id == point.chunk_id)
        self.assertLessEqual(abs(chunk.sentences.index(EITHER_OR) - point.sentence_index), 1)

        # One point is below the default minimum of three.
        self.assertEqual(len(warnings), 1)
        self.assertEqual(warnings[0].stage, "detection")

    def test_points_keep_minimum_spacing(self):
        config = make_config(text_chunking={'max_chunk_size': 600, 'overlap_size': 150})
        chunks, _ = step1.run_step1(config, decision_story())
        points, _ = step2.run_step2(config, chunks)

        self.assertGreater(len(points), 1)
        for previous, current in zip(points, points[1:]):
            if previous.chunk_id == current.chunk_id:
                self.assertGreaterEqual(current.sentence_index - previous.sentence_index, 3)

    def test_count_is_capped_and_sorted(self):
        config = make_config(
            text_chunking={'max_chunk_size': 600, 'overlap_size': 150},
            decision_detection={'min_decision_points': 1, 'max_decision_points': 2},
        )
        chunks, _ = step1.run_step1(config, decision_story())
        points, warnings = step2.run_step2(config, chunks)

        self.assertEqual(len(points), 2)
        self.assertEqual(warnings, [])
        keys = [(p.chunk_index, p.sentence_index) for p in points]
        self.assertEqual(keys, sorted(keys))

    def test_min_confidence_is_a_threshold(self):
        sentences = filler(6) + [CUE_ONLY] + filler(6, offset=2)
        chunks = [_chunk(sentences)]

        medium = step2.DecisionPointDetector(make_config())
        self.assertEqual(medium.detect(chunks), [])

        low = step2.DecisionPointDetector(make_config(decision_detection={'min_confidence': 'low'}))
        points = low.detect(chunks)
        self.assertEqual(len(points), 1)
        self.assertEqual(points[0].category, "General Choice Point")
        self.assertEqual(points[0].confidence, "low")
        self.assertEqual(points[0].matched_pattern, "choice_cue")

    def test_overlap_sentences_are_context_only(self):
        sentences = [EITHER_OR] + filler(8)
        chunks = [_chunk(sentences, overlap=2)]

        narrow = step2.DecisionPointDetector(make_config())
        self.assertEqual(narrow.detect(chunks), [])

        wide = step2.DecisionPointDetector(make_config(decision_detection={'context_window': 2}))
        points = wide.detect(chunks)
        self.assertEqual(len(points), 1)
        self.assertEqual(points[0].sentence_index, 2)

    def test_per_chunk_cap_prefers_higher_score(self):
        sentences = filler(3) + [FORK] + filler(6) + [EITHER_OR] + filler(3)
        config = make_config(decision_detection={'max_points_per_chunk': 1})

        points = step2.DecisionPointDetector(config).detect([_chunk(sentences)])

        self.assertEqual(len(points), 1)
        self.assertEqual(points[0].category, "Moral & Ethical Crossroads")
        self.assertEqual(points[0].sentence_index, 9)

    def test_detection_is_deterministic_across_workers(self):
        config = make_config(text_chunking={'max_chunk_size': 600, 'overlap_size': 150})
        chunks, _ = step1.run_step1(config, decision_story())

        first = step2.DecisionPointDetector(config).detect(chunks)
        again = step2.DecisionPointDetector(config).detect(chunks)
        threaded = step2.DecisionPointDetector(
            make_config(text_chunking={'max_chunk_size': 600, 'overlap_size': 150},
                        pipeline={'workers': 4})
        ).detect(chunks)

        self.assertEqual(first, again)
        self.assertEqual(first, threaded)
        for point in first:
            self.assertGreaterEqual(point.position, 0.0)
            self.assertLess(point.position, 1.0)

    def test_failing_chunk_is_skipped_with_warning(self):
        broken = Chunk(
            id="chunk_0", index=0, section_index=0, section_title="Beginning",
            content="", start_offset=0, end_offset=0, word_count=0, sentences=None,
        )
        good = _chunk(filler(3) + [EITHER_OR] + filler(3), index=1)
        detector = step2.DecisionPointDetector(make_config(decision_detection={'min_decision_points': 0}))

        points = detector.detect([broken, good])

        self.assertEqual([p.chunk_id for p in points], ["chunk_1"])
        self.assertEqual(len(detector.warnings), 1)
        self.assertIn("chunk_0", detector.warnings[0].message)

    def test_distribution_stats(self):
        config = make_config(text_chunking={'max_chunk_size': 600, 'overlap_size': 150})
        chunks, _ = step1.run_step1(config, decision_story())
        points, _ = step2.run_step2(config, chunks)

        stats = step2.distribution_stats(points)
        self.assertEqual(stats['total'], len(points))
        self.assertEqual(sum(stats['by_category'].values()), len(points))
        self.assertEqual(sum(stats['by_confidence'].values()), len(points))
        self.assertGreaterEqual(stats['avg_spacing'], 0.0)

    def test_classify_first_category_wins(self):
        detector = step2.DecisionPointDetector(make_config())
        context = paragraph([FORK, EITHER_OR])
        category, weight, _, confidence = detector.classify(context)
        self.assertEqual(category, "Moral & Ethical Crossroads")
        self.assertEqual(weight, 1.5)
        self.assertEqual(confidence, "high")


if __name__ == '__main__':
    unittest.main()
