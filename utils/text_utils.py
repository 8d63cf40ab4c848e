"""Text processing utilities."""
import re
import chardet


# Terminal punctuation, optionally closed by a quote, then whitespace and a
# capital letter or opening quote.
SENTENCE_BOUNDARY = re.compile(
    r"(?:(?<=[.!?])|(?<=[.!?][\"”'’]))\s+(?=[A-Z\"“])"
)
PARAGRAPH_PATTERN = re.compile(r"[^\n]+(?:\n[^\n]+)*")


def detect_encoding(file_path):
    """Detect file encoding."""
    with open(file_path, 'rb') as f:
        raw_data = f.read()
    result = chardet.detect(raw_data)
    return result['encoding'] or 'utf-8'


def read_text_file(file_path):
    """Read text file with automatic encoding detection."""
    encoding = detect_encoding(file_path)
    with open(file_path, 'r', encoding=encoding, errors='replace') as f:
        content = f.read()

    # Remove BOM if present
    if content.startswith('\ufeff'):
        content = content[1:]

    return content


def normalize_text(text):
    """Normalize line endings and whitespace; at most one blank line in a row."""
    text = (text or "").replace('\r\n', '\n').replace('\r', '\n')
    text = text.replace('\t', ' ')
    text = re.sub(r' {2,}', ' ', text)
    text = re.sub(r' *\n *', '\n', text)
    text = re.sub(r'\n{3,}', '\n\n', text)
    return text.strip()


def split_paragraphs(text):
    """Split normalized text into blank-line-delimited paragraphs.

    Returns:
        List of (paragraph, start_offset) tuples
    """
    return [(m.group(0), m.start()) for m in PARAGRAPH_PATTERN.finditer(text)]


def fold_lines(text):
    return re.sub(r'\s*\n\s*', ' ', text).strip()


def split_sentences(paragraph):
    """Split a paragraph into sentences with their spans.

    A paragraph without a detectable sentence boundary is one sentence.

    Returns:
        List of (sentence, start, end) tuples, offsets relative to paragraph
    """
    spans = []
    start = 0
    for match in SENTENCE_BOUNDARY.finditer(paragraph):
        spans.append((start, match.start()))
        start = match.end()
    spans.append((start, len(paragraph)))

    result = []
    for begin, end in spans:
        sentence = fold_lines(paragraph[begin:end])
        if sentence:
            result.append((sentence, begin, end))
    return result


def count_words(text):
    return len((text or "").split())


def extract_text_snippet(text, length=30):
    """Extract a snippet of text for display."""
    if len(text) <= length:
        return text
    return text[:length] + "..."
