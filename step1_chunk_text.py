"""Step 1: Split story text into sentence-aligned chunks."""
import re
import logging
from utils.text_utils import (
    count_words,
    normalize_text,
    split_paragraphs,
    split_sentences,
)
from utils.validation import check_chunks
from weaver.errors import DegenerateInputWarning
from weaver.models import Chunk


logger = logging.getLogger(__name__)

STAGE = "chunking"
MAX_HEADING_LENGTH = 100

DIALOGUE_PATTERNS = [
    re.compile(r'"[^"]+"'),
    re.compile(r'“[^”]+”'),
    re.compile(r"(?<!\w)'[^']+'(?!\w)"),
    re.compile(r'\b(?:said|asked|replied)\s+[A-Z]\w+'),
]


def has_dialogue(text):
    return any(pattern.search(text) for pattern in DIALOGUE_PATTERNS)


def reconstruct_sentences(chunks):
    """Document sentences in order, without the overlap repeated between chunks."""
    return [sentence for chunk in chunks for sentence in chunk.new_sentences]


def _joined_length(records):
    if not records:
        return 0
    return sum(len(r[0]) for r in records) + len(records) - 1


class TextChunker:
    """Split normalized text into sections, then into bounded chunks."""

    def __init__(self, config):
        """Initialize with config."""
        self.config = config
        self.max_chunk_size = config['text_chunking']['max_chunk_size']
        self.overlap_size = config['text_chunking']['overlap_size']
        self.heading_patterns = [
            re.compile(p) for p in config['text_chunking'].get('heading_patterns') or []
        ]
        self.warnings = []

    def chunk(self, raw_text):
        """
        Split raw text into chunks.

        Returns:
            List of Chunk, ordered by index
        """
        self.warnings = []
        text = normalize_text(raw_text)
        logger.info(f"Normalized text length: {len(text)} characters")

        sections = self.detect_sections(text)
        chunks = []
        for section in sections:
            chunks.extend(self._chunk_section(section, len(chunks)))

        if not chunks:
            self._warn("Input has no usable text; produced a single empty chunk")
            return [Chunk(
                id="chunk_0",
                index=0,
                section_index=0,
                section_title="Full Text",
                content="",
                start_offset=0,
                end_offset=0,
                word_count=0,
            )]

        logger.info(f"Created {len(chunks)} chunks from {len(sections)} sections")
        return chunks

    def is_heading(self, paragraph):
        if len(paragraph) >= MAX_HEADING_LENGTH:
            return False
        return any(pattern.search(paragraph) for pattern in self.heading_patterns)

    def detect_sections(self, text):
        """
        Group paragraphs into sections started by heading paragraphs.

        Returns:
            List of section dicts: title, index, is_chapter, paragraphs
        """
        paragraphs = split_paragraphs(text)
        sections = []
        current = {'title': 'Beginning', 'index': 0, 'is_chapter': False, 'paragraphs': []}

        for paragraph, offset in paragraphs:
            if self.is_heading(paragraph):
                if current['paragraphs']:
                    sections.append(current)
                current = {
                    'title': paragraph.strip(),
                    'index': current['index'] + 1,
                    'is_chapter': True,
                    'paragraphs': [],
                }
            else:
                current['paragraphs'].append((paragraph, offset))

        if current['paragraphs']:
            sections.append(current)

        if not sections and paragraphs:
            sections.append({
                'title': 'Full Text',
                'index': 0,
                'is_chapter': False,
                'paragraphs': paragraphs,
            })

        return sections

    def _section_sentences(self, section):
        records = []
        for para_index, (paragraph, offset) in enumerate(section['paragraphs']):
            for sentence, start, end in split_sentences(paragraph):
                records.append((sentence, offset + start, offset + end, para_index))
        return records

    def _overlap_seed(self, closed, next_record):
        """Last two sentences of the closed chunk, or the last one, if they fit."""
        for count in (2, 1):
            if len(closed) < count:
                continue
            tail = closed[-count:]
            length = _joined_length(tail)
            if length > self.overlap_size:
                continue
            if length + 1 + len(next_record[0]) > self.max_chunk_size:
                continue
            return list(tail)
        return []

    def _chunk_section(self, section, first_index):
        records = self._section_sentences(section)
        groups = []
        current = []
        overlap = 0

        for record in records:
            if current and _joined_length(current + [record]) > self.max_chunk_size:
                groups.append((current, overlap))
                seed = self._overlap_seed(current, record)
                current = seed + [record]
                overlap = len(seed)
            else:
                current.append(record)

        if current:
            groups.append((current, overlap))

        chunks = []
        for i, (group, overlap) in enumerate(groups):
            index = first_index + i
            content = " ".join(r[0] for r in group)
            chunks.append(Chunk(
                id=f"chunk_{index}",
                index=index,
                section_index=section['index'],
                section_title=section['title'],
                content=content,
                start_offset=group[0][1],
                end_offset=group[-1][2],
                word_count=count_words(content),
                sentences=tuple(r[0] for r in group),
                is_chapter_start=section['is_chapter'] and i == 0,
                is_chapter_end=section['is_chapter'] and i == len(groups) - 1,
                has_dialogue=has_dialogue(content),
                overlap_sentences=overlap,
                paragraph_count=len({r[3] for r in group}),
            ))
        return chunks

    def _warn(self, message):
        logger.warning(message)
        self.warnings.append(DegenerateInputWarning(STAGE, message))


def run_step1(config, raw_text):
    """
    Run step 1: text chunking.

    Returns:
        tuple: (chunks, warnings)
    """
    chunker = TextChunker(config)
    chunks = chunker.chunk(raw_text)

    text = normalize_text(raw_text)
    source_sentences = [
        sentence
        for paragraph, _ in split_paragraphs(text)
        for sentence, _, _ in split_sentences(paragraph)
    ]
    issues = check_chunks(source_sentences, chunks, chunker.max_chunk_size, chunker.overlap_size)
    for issue in issues:
        logger.warning(f"Chunk check {issue['chunk_id']}: {issue['message']}")

    return chunks, list(chunker.warnings)


if __name__ == '__main__':
    import sys
    import yaml
    from utils.text_utils import read_text_file
    from utils.validation import merge_config

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    with open('config.yaml', 'r', encoding='utf-8') as f:
        config = merge_config(yaml.safe_load(f))

    input_file = sys.argv[1] if len(sys.argv) > 1 else config['paths']['input_file']
    chunks, _ = run_step1(config, read_text_file(input_file))
    for chunk in chunks:
        print(f"{chunk.id} [{chunk.section_title}] {chunk.word_count} words, "
              f"{len(chunk.sentences)} sentences")
