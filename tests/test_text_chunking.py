"""Tests for sentence-safe chunking (step 1)."""
import unittest

import step1_chunk_text as step1
from tests.fixtures import either_or_story, make_config
from utils.text_utils import normalize_text, split_paragraphs, split_sentences


def _source_sentences(text):
    return [
        sentence
        for para, _ in split_paragraphs(normalize_text(text))
        for sentence, _, _ in split_sentences(para)
    ]


class TextUtilsTests(unittest.TestCase):
    def test_normalize_text(self):
        text = "  Line one is here.\r\nStill line one.\t\tTabbed  spaced.\r\n\r\n\r\n\r\nNext.  "
        self.assertEqual(
            normalize_text(text),
            "Line one is here.\nStill line one. Tabbed spaced.\n\nNext.",
        )

    def test_split_sentences_folds_line_breaks(self):
        sentences = [s for s, _, _ in split_sentences('He ran.\nShe "Waited." Then "Go!" It ended')]
        self.assertEqual(sentences, ['He ran.', 'She "Waited."', 'Then "Go!"', 'It ended'])

    def test_paragraph_without_terminator_is_one_sentence(self):
        self.assertEqual([s for s, _, _ in split_sentences("no ending here")], ["no ending here"])


class TextChunkerTests(unittest.TestCase):
    def test_sentences_are_never_split(self):
        config = make_config(text_chunking={'max_chunk_size': 400, 'overlap_size': 150})
        text = either_or_story()
        chunks, warnings = step1.run_step1(config, text)

        self.assertGreater(len(chunks), 1)
        self.assertEqual(warnings, [])
        source = set(_source_sentences(text))
        for chunk in chunks:
            for sentence in chunk.sentences:
                self.assertIn(sentence, source)

    def test_reconstruct_matches_source_order(self):
        config = make_config(text_chunking={'max_chunk_size': 400, 'overlap_size': 150})
        text = either_or_story()
        chunks, _ = step1.run_step1(config, text)
        self.assertEqual(step1.reconstruct_sentences(chunks), _source_sentences(text))

    def test_size_and_overlap_bounds(self):
        config = make_config(text_chunking={'max_chunk_size': 400, 'overlap_size': 150})
        chunks = step1.TextChunker(config).chunk(either_or_story())

        self.assertEqual(chunks[0].overlap_sentences, 0)
        self.assertTrue(any(c.overlap_sentences > 0 for c in chunks[1:]))
        for i, chunk in enumerate(chunks):
            self.assertEqual(chunk.index, i)
            self.assertEqual(chunk.id, f"chunk_{i}")
            self.assertLessEqual(len(chunk.content), 400)
            self.assertLessEqual(chunk.overlap_sentences, 2)
            overlap = " ".join(chunk.sentences[:chunk.overlap_sentences])
            self.assertLessEqual(len(overlap), 150)
            if chunk.overlap_sentences:
                previous = chunks[i - 1].sentences
                self.assertEqual(chunk.sentences[:chunk.overlap_sentences],
                                 previous[-chunk.overlap_sentences:])

    def test_no_overlap_when_sentences_exceed_overlap_size(self):
        config = make_config(text_chunking={'max_chunk_size': 400, 'overlap_size': 20})
        chunks = step1.TextChunker(config).chunk(either_or_story())
        self.assertTrue(all(c.overlap_sentences == 0 for c in chunks))

    def test_long_sentence_forms_its_own_chunk(self):
        config = make_config(text_chunking={'max_chunk_size': 50, 'overlap_size': 10})
        long_sentence = "This sentence keeps going on and on well past the tiny limit set for chunks."
        text = f"A short opening line. {long_sentence} A short closing line."

        chunks = step1.TextChunker(config).chunk(text)

        self.assertEqual(len(chunks), 3)
        self.assertEqual(chunks[1].sentences, (long_sentence,))
        self.assertEqual(chunks[2].sentences, ("A short closing line.",))

    def test_empty_input_gives_single_empty_chunk_and_warning(self):
        chunker = step1.TextChunker(make_config())
        chunks = chunker.chunk("   \n\n  ")

        self.assertEqual(len(chunks), 1)
        self.assertEqual(chunks[0].content, "")
        self.assertEqual(chunks[0].sentences, ())
        self.assertEqual(len(chunker.warnings), 1)
        self.assertEqual(chunker.warnings[0].stage, "chunking")

    def test_headings_start_sections(self):
        text = (
            "Intro sentence one here. Intro two.\n\n"
            "Chapter 1\n\n"
            "First chapter text. More text here.\n\n"
            "Chapter 2\n\n"
            "Second chapter text."
        )
        chunks = step1.TextChunker(make_config()).chunk(text)

        self.assertEqual([c.section_title for c in chunks], ["Beginning", "Chapter 1", "Chapter 2"])
        self.assertEqual([c.section_index for c in chunks], [0, 1, 2])
        self.assertFalse(chunks[0].is_chapter_start)
        self.assertTrue(chunks[1].is_chapter_start)
        self.assertTrue(chunks[1].is_chapter_end)
        self.assertEqual(chunks[1].sentences, ("First chapter text.", "More text here."))

    def test_overlap_does_not_cross_sections(self):
        config = make_config(text_chunking={'max_chunk_size': 400, 'overlap_size': 150})
        story = either_or_story().split("\n\n")
        text = "\n\n".join([story[0], "Chapter 2", story[1]])

        chunks = step1.TextChunker(config).chunk(text)
        first_of_chapter = next(c for c in chunks if c.section_title == "Chapter 2")
        self.assertEqual(first_of_chapter.overlap_sentences, 0)
        self.assertTrue(first_of_chapter.is_chapter_start)

    def test_only_headings_fall_back_to_full_text(self):
        chunks = step1.TextChunker(make_config()).chunk("CHAPTER ONE\n\nPART 2")
        self.assertEqual(len(chunks), 1)
        self.assertEqual(chunks[0].section_title, "Full Text")
        self.assertEqual(chunks[0].sentences, ("CHAPTER ONE", "PART 2"))

    def test_offsets_point_into_normalized_text(self):
        config = make_config(text_chunking={'max_chunk_size': 400, 'overlap_size': 150})
        text = either_or_story()
        normalized = normalize_text(text)
        for chunk in step1.TextChunker(config).chunk(text):
            span = normalized[chunk.start_offset:chunk.end_offset]
            self.assertTrue(span.startswith(chunk.sentences[0]))
            self.assertTrue(span.endswith(chunk.sentences[-1]))

    def test_dialogue_detection(self):
        self.assertTrue(step1.has_dialogue('"Come here," the captain called.'))
        self.assertTrue(step1.has_dialogue('Not yet, said Anna quietly.'))
        self.assertFalse(step1.has_dialogue("The dog's bowl was empty."))


if __name__ == '__main__':
    unittest.main()
