"""
Legal-Aware Recursive Chunker

Splits legal documents into overlapping, structure-aware chunks suitable
for embedding. Every chunk is an exact slice of the cleaned document, so
start_char/end_char can be used to locate it again.

Splitting strategy (highest priority first):
- Section markers (ARTICLE, SECTION, numbered and ALL-CAPS headings)
- Paragraph breaks
- Line breaks
- Sentence ends
- Clause boundaries (; and ,)
- Word boundaries
- Fixed-width character slices (always terminates)

Fragments are greedily re-merged up to chunk_size, and each chunk after
the first is prefixed with the tail of the previous one.
"""

import re
import math
import logging
from dataclasses import dataclass, field
from typing import Optional

from .legal_patterns import (
    SECTION_SEPARATOR_PATTERN,
    HEADER_PATTERNS,
    MAX_HEADER_LINE_LENGTH,
)

logger = logging.getLogger(__name__)


# Chunks may exceed chunk_size by this factor (overlap prefix and merged tails)
MAX_CHUNK_FACTOR = 1.2

# Literal separators used when ChunkOptions.separators is not customised
DEFAULT_SEPARATORS = ["\n\n", "\n", ". ", "! ", "? ", "; ", ", ", " ", ""]

_PARAGRAPH_PATTERN = re.compile(r"\n\n+")
_LINE_PATTERN = re.compile(r"\n")
_SENTENCE_PATTERN = re.compile(r"[.!?]\s+")
_CLAUSE_PATTERN = re.compile(r"[;,]\s+")
_WORD_PATTERN = re.compile(r"\s+")


@dataclass
class Chunk:
    """A contiguous slice of a cleaned document."""
    index: int
    content: str
    start_char: int
    end_char: int
    section_header: Optional[str] = None
    is_first: bool = False
    is_last: bool = False
    token_count: int = 0

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "content": self.content,
            "start_char": self.start_char,
            "end_char": self.end_char,
            "section_header": self.section_header,
            "is_first": self.is_first,
            "is_last": self.is_last,
            "token_count": self.token_count,
        }


@dataclass
class ChunkOptions:
    """Configuration for chunking parameters (sizes are in characters)."""
    chunk_size: int = 1500
    chunk_overlap: int = 200
    min_chunk_size: int = 100
    # Literal separators in priority order; None uses the built-in legal tiers
    separators: Optional[list[str]] = None
    respect_paragraphs: bool = True
    respect_sections: bool = True

    def __post_init__(self):
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0 or self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap must be in [0, chunk_size), got {self.chunk_overlap}"
            )
        if self.min_chunk_size < 0:
            raise ValueError(f"min_chunk_size must be >= 0, got {self.min_chunk_size}")

    @property
    def max_chunk_length(self) -> int:
        return int(self.chunk_size * MAX_CHUNK_FACTOR)


# =============================================================================
# Text Utilities
# =============================================================================

def clean_text(text: str) -> str:
    """
    Normalize whitespace before chunking.

    CRLF/CR become LF, runs of spaces and tabs collapse to one space,
    three or more newlines collapse to a blank line, and the result is stripped.
    """
    if not text:
        return ""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def estimate_tokens(text: str) -> int:
    """Rough token count (~4 characters per token for English legal text)."""
    return math.ceil(len(text) / 4)


def calculate_optimal_chunk_size(document_length: int, target_chunks: int = 20) -> int:
    """
    Pick a chunk size that yields roughly target_chunks chunks.

    Args:
        document_length: Length of the document in characters
        target_chunks: Desired number of chunks

    Returns:
        Chunk size clamped to [500, 3000]
    """
    if target_chunks <= 0:
        target_chunks = 20
    optimal = math.ceil(document_length / target_chunks)
    return max(500, min(3000, optimal))


def _match_header(line: str) -> Optional[str]:
    """Return the header text if a single line looks like a section header."""
    line = line.strip()
    if not line:
        return None

    numbered = HEADER_PATTERNS["numbered"].match(line)
    if numbered and len(line) < MAX_HEADER_LINE_LENGTH:
        return numbered.group(1).strip()

    if HEADER_PATTERNS["all_caps"].match(line):
        return line

    markdown = HEADER_PATTERNS["markdown"].match(line)
    if markdown:
        return markdown.group(1).strip()

    if HEADER_PATTERNS["keyword"].match(line) and len(line) < MAX_HEADER_LINE_LENGTH:
        return line

    return None


def detect_section_header(content: str) -> Optional[str]:
    """
    Detect a section header in the first three non-empty lines of content.

    Checked in order: numbered heading, ALL CAPS line, markdown heading,
    ARTICLE/SECTION/SCHEDULE/PART/EXHIBIT keyword.
    """
    lines = [line for line in content.split("\n") if line.strip()][:3]
    for line in lines:
        header = _match_header(line)
        if header:
            return header
    return None


def find_section_headers(text: str) -> list[tuple[int, str]]:
    """
    Locate every header line in text.

    Returns:
        List of (line_start_offset, header_text) in document order
    """
    headers = []
    offset = 0
    for line in text.split("\n"):
        header = _match_header(line)
        if header:
            headers.append((offset, header))
        offset += len(line) + 1
    return headers


# =============================================================================
# Chunker
# =============================================================================

class LegalChunker:
    """
    Recursive, separator-based chunker for legal text.

    Output is deterministic: the same text and options always produce the
    same chunks, which makes re-chunking idempotent.
    """

    def __init__(self, options: Optional[ChunkOptions] = None):
        """
        Initialize chunker.

        Args:
            options: Optional chunking options. Uses defaults if not provided.
        """
        self.options = options or ChunkOptions()
        self._tiers = self._build_tiers()

    @classmethod
    def from_settings(cls, settings) -> "LegalChunker":
        """Build a chunker from RAGSettings chunk defaults."""
        return cls(ChunkOptions(
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
            min_chunk_size=settings.min_chunk_size,
        ))

    def _build_tiers(self) -> list[Optional[re.Pattern]]:
        """Compile the separator tiers; None marks fixed-width slicing."""
        opts = self.options
        tiers: list[Optional[re.Pattern]] = []

        if opts.respect_sections:
            tiers.append(SECTION_SEPARATOR_PATTERN)

        if opts.separators is None:
            if opts.respect_paragraphs:
                tiers.append(_PARAGRAPH_PATTERN)
            tiers.extend([_LINE_PATTERN, _SENTENCE_PATTERN, _CLAUSE_PATTERN, _WORD_PATTERN])
        else:
            for sep in opts.separators:
                if sep == "":
                    continue
                if sep == "\n\n" and not opts.respect_paragraphs:
                    continue
                tiers.append(re.compile(re.escape(sep)))

        tiers.append(None)
        return tiers

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def chunk(self, text: str) -> list[Chunk]:
        """
        Split a document into overlapping chunks.

        Args:
            text: Raw document text

        Returns:
            Ordered list of Chunk objects (offsets refer to clean_text(text))
        """
        cleaned = clean_text(text)
        if not cleaned:
            return []

        if len(cleaned) <= self.options.chunk_size:
            spans = [(0, len(cleaned), 0)]
        else:
            spans = self._chunk_span(cleaned, 0, len(cleaned))

        chunks = self._build_chunks(cleaned, spans, find_section_headers(cleaned))
        logger.debug(f"Chunked {len(cleaned)} chars into {len(chunks)} chunks")
        return chunks

    def chunk_legal(self, text: str) -> list[Chunk]:
        """
        Section-aware chunking.

        Splits on legal section headers first, chunks each section on its
        own (no overlap across section boundaries) and tags every chunk
        with its nearest preceding header.

        Args:
            text: Raw document text

        Returns:
            Ordered list of Chunk objects (offsets refer to clean_text(text))
        """
        cleaned = clean_text(text)
        if not cleaned:
            return []

        headers = find_section_headers(cleaned)
        if len(cleaned) <= self.options.chunk_size or not headers:
            return self.chunk(cleaned)

        spans = []
        for sec_start, sec_end in self._section_bounds(cleaned, headers):
            if sec_end - sec_start <= self.options.chunk_size:
                spans.append((sec_start, sec_end, sec_start))
            else:
                spans.extend(self._chunk_span(cleaned, sec_start, sec_end))

        chunks = self._build_chunks(cleaned, spans, headers)
        logger.info(
            f"Section-aware chunking: {len(headers)} headers, {len(chunks)} chunks "
            f"from {len(cleaned)} chars"
        )
        return chunks

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _section_bounds(self, text: str, headers: list[tuple[int, str]]) -> list[tuple[int, int]]:
        """Section spans between header lines; sections below min size join the next."""
        starts = [pos for pos, _ in headers if pos > 0]
        bounds = [0] + starts + [len(text)]

        sections = []
        pending_start = None
        for start, end in zip(bounds, bounds[1:]):
            if pending_start is not None:
                start = pending_start
                pending_start = None
            if end - start < self.options.min_chunk_size:
                if end < len(text):
                    pending_start = start
                    continue
                if sections and end - sections[-1][0] <= self.options.max_chunk_length:
                    sections[-1] = (sections[-1][0], end)
                    continue
            sections.append((start, end))

        if pending_start is not None:
            if sections:
                sections[-1] = (sections[-1][0], len(text))
            else:
                sections.append((pending_start, len(text)))
        return sections

    def _chunk_span(self, text: str, start: int, end: int) -> list[tuple[int, int, int]]:
        """Split, merge and overlap one span. Returns (start, end, body_start) triples."""
        fragments = self._split(text, start, end, 0)
        bodies = self._merge(fragments)
        bodies = self._absorb_small(bodies)
        return self._add_overlap(text, bodies)

    def _split(self, text: str, start: int, end: int, tier: int) -> list[tuple[int, int]]:
        """Recursively split [start, end) until every fragment fits chunk_size."""
        size = self.options.chunk_size
        if end - start <= size:
            return [(start, end)]

        pattern = self._tiers[tier]
        if pattern is None:
            return [(pos, min(pos + size, end)) for pos in range(start, end, size)]

        cuts = [m.end() for m in pattern.finditer(text, start, end) if start < m.end() < end]
        if not cuts:
            return self._split(text, start, end, tier + 1)

        fragments = []
        bounds = [start] + cuts + [end]
        for frag_start, frag_end in zip(bounds, bounds[1:]):
            if frag_end > frag_start:
                fragments.extend(self._split(text, frag_start, frag_end, tier + 1))
        return fragments

    def _merge(self, fragments: list[tuple[int, int]]) -> list[tuple[int, int]]:
        """Greedily merge contiguous fragments up to chunk_size."""
        size = self.options.chunk_size
        bodies: list[tuple[int, int]] = []
        current = None
        for frag_start, frag_end in fragments:
            if current is None:
                current = (frag_start, frag_end)
            elif frag_end - current[0] <= size:
                current = (current[0], frag_end)
            else:
                bodies.append(current)
                current = (frag_start, frag_end)
        if current is not None:
            bodies.append(current)
        return bodies

    def _absorb_small(self, bodies: list[tuple[int, int]]) -> list[tuple[int, int]]:
        """Fold bodies shorter than min_chunk_size into a neighbour when it fits the cap."""
        min_size = self.options.min_chunk_size
        cap = self.options.max_chunk_length

        merged: list[tuple[int, int]] = []
        for body_start, body_end in bodies:
            if merged and body_end - body_start < min_size and body_end - merged[-1][0] <= cap:
                merged[-1] = (merged[-1][0], body_end)
            else:
                merged.append((body_start, body_end))

        if len(merged) > 1:
            first_start, first_end = merged[0]
            if first_end - first_start < min_size and merged[1][1] - first_start <= cap:
                merged[0:2] = [(first_start, merged[1][1])]
        return merged

    def _add_overlap(self, text: str, bodies: list[tuple[int, int]]) -> list[tuple[int, int, int]]:
        """Prefix each body with the tail of the previous one, within the hard cap."""
        cap = self.options.max_chunk_length
        spans = []
        for i, (body_start, body_end) in enumerate(bodies):
            start = body_start
            if i > 0 and self.options.chunk_overlap > 0:
                prev_start = bodies[i - 1][0]
                prefix = min(
                    self.options.chunk_overlap,
                    cap - (body_end - body_start),
                    body_start - prev_start,
                )
                if prefix > 0:
                    start = self._snap_to_word(text, body_start - prefix, body_start)
            spans.append((start, body_end, body_start))
        return spans

    @staticmethod
    def _snap_to_word(text: str, start: int, limit: int) -> int:
        """Move start forward to the next word boundary, staying before limit."""
        if start == 0 or text[start - 1].isspace():
            return start
        match = _WORD_PATTERN.search(text, start, limit)
        if match and match.end() < limit:
            return match.end()
        return start

    def _build_chunks(
        self,
        text: str,
        spans: list[tuple[int, int, int]],
        headers: list[tuple[int, str]],
    ) -> list[Chunk]:
        """Materialize spans into Chunk objects with header metadata."""
        header_positions = [pos for pos, _ in headers]
        chunks = []
        last = len(spans) - 1
        for i, (start, end, body_start) in enumerate(spans):
            content = text[start:end]
            chunks.append(Chunk(
                index=i,
                content=content,
                start_char=start,
                end_char=end,
                section_header=self._header_for(
                    body_start, header_positions, headers, content
                ),
                is_first=(i == 0),
                is_last=(i == last),
                token_count=estimate_tokens(content),
            ))
        return chunks

    @staticmethod
    def _header_for(
        position: int,
        header_positions: list[int],
        headers: list[tuple[int, str]],
        content: str,
    ) -> Optional[str]:
        """Nearest header at or before position, else one detected in the chunk itself."""
        nearest = None
        for idx, pos in enumerate(header_positions):
            if pos > position:
                break
            nearest = headers[idx][1]
        return nearest or detect_section_header(content)


def chunk_document(text: str, options: Optional[ChunkOptions] = None) -> list[Chunk]:
    """Convenience wrapper around LegalChunker.chunk()."""
    return LegalChunker(options).chunk(text)


def chunk_legal_document(text: str, options: Optional[ChunkOptions] = None) -> list[Chunk]:
    """Convenience wrapper around LegalChunker.chunk_legal()."""
    return LegalChunker(options).chunk_legal(text)


# CLI for testing
if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) < 2:
        print("Usage: python -m execution.counsel_rag.chunker <file.txt> [chunk_size]")
        sys.exit(1)

    with open(sys.argv[1], encoding="utf-8") as f:
        source = f.read()

    size = int(sys.argv[2]) if len(sys.argv) > 2 else calculate_optimal_chunk_size(len(source))
    chunker = LegalChunker(ChunkOptions(chunk_size=size, chunk_overlap=min(200, size // 5)))
    result = chunker.chunk_legal(source)

    print(f"\nChunks: {len(result)} (chunk_size={size})")
    print("-" * 50)
    for c in result:
        print(f"\n[{c.index}] {c.start_char}-{c.end_char} ({c.token_count} tokens)")
        print(f"   Header: {c.section_header}")
        print(f"   Preview: {c.content[:120]!r}")
