"""
Verified Citation Extraction for Legal Documents

For each top-ranked chunk, asks an extractive reader for the exact span
that answers the user's question. A quote is only kept if it appears
verbatim in the chunk; its offsets are re-aligned to where it actually
occurs. Without a reader, the first sentence of each chunk is used and
the result is marked unverified.

Formatting helpers render citations for the language model prompt and
for the UI.
"""

import logging
import threading
from typing import Optional
from dataclasses import dataclass, field

from .concurrency import run_bounded
from .reader import BaseReader, ExtractedAnswer
from .vector_store import SearchResult
from .legal_patterns import CONTEXT_HEADINGS

logger = logging.getLogger(__name__)


@dataclass
class VerifiedCitation:
    """An exact quote from a source chunk."""
    document_name: str
    chunk_id: str
    chunk_index: int
    exact_quote: str
    start_char: int  # offset of the quote within full_context
    end_char: int
    confidence: float
    relevance_score: float
    full_context: str
    verified: bool = True
    truncated: bool = False

    @property
    def display_quote(self) -> str:
        """Quote as shown to readers; cut excerpts end with "..."."""
        return f"{self.exact_quote}..." if self.truncated else self.exact_quote

    def to_dict(self) -> dict:
        return {
            "document_name": self.document_name,
            "chunk_id": self.chunk_id,
            "chunk_index": self.chunk_index,
            "exact_quote": self.exact_quote,
            "start_char": self.start_char,
            "end_char": self.end_char,
            "confidence": self.confidence,
            "relevance_score": self.relevance_score,
            "verified": self.verified,
            "truncated": self.truncated,
        }


@dataclass
class CitationResult:
    """Citations for one query."""
    citations: list[VerifiedCitation] = field(default_factory=list)
    verified: bool = False  # True when an extractive reader produced the quotes
    documents_processed: int = 0

    def to_dict(self) -> dict:
        return {
            "citations": [c.to_dict() for c in self.citations],
            "verified": self.verified,
            "documents_processed": self.documents_processed,
        }


def align_quote(context: str, quote: str, start: int, end: int) -> Optional[tuple[int, int]]:
    """
    Locate quote in context.

    Keeps the reported offsets when they match; otherwise uses the literal
    occurrence closest to the reported start.

    Returns:
        (start, end) offsets, or None if the quote is not in context
    """
    if not quote:
        return None
    if 0 <= start < end <= len(context) and context[start:end] == quote:
        return (start, end)

    best = None
    pos = context.find(quote)
    while pos != -1:
        if best is None or abs(pos - start) < abs(best - start):
            best = pos
        pos = context.find(quote, pos + 1)

    if best is None:
        return None
    return (best, best + len(quote))


class CitationExtractor:
    """
    Extract verified citations from search results.

    Reader calls for the top results run concurrently on a bounded pool;
    a failed or timed-out call simply yields no citation for that chunk.
    """

    def __init__(
        self,
        reader: BaseReader,
        max_workers: int = 5,
        task_timeout: Optional[float] = 45.0,
    ):
        """
        Initialize citation extractor.

        Args:
            reader: Extractive reader (offline implementation allowed)
            max_workers: Concurrent reader calls
            task_timeout: Seconds allowed per reader call
        """
        self.reader = reader
        self.max_workers = max_workers
        self.task_timeout = task_timeout

    def extract_citations(
        self,
        query: str,
        results: list[SearchResult],
        max_citations: int = 5,
        cancel_event: Optional[threading.Event] = None,
    ) -> CitationResult:
        """
        Extract citations for the top results.

        Args:
            query: The user's question
            results: Ranked search results
            max_citations: Number of top results to process
            cancel_event: Stops pending reader calls when set

        Returns:
            CitationResult with citations sorted by descending confidence
        """
        if not results or max_citations <= 0:
            return CitationResult()

        to_process = results[:max_citations]

        cited = run_bounded(
            lambda result: self._cite(query, result),
            to_process,
            max_workers=self.max_workers,
            task_timeout=self.task_timeout,
            cancel_event=cancel_event,
            label="citation",
        )

        citations = [c for c in cited if c is not None]
        citations.sort(key=lambda c: c.confidence, reverse=True)

        verified = self.reader.available
        logger.info(
            f"Extracted {len(citations)}/{len(to_process)} citations "
            f"({'verified' if verified else 'first-sentence fallback'})"
        )
        return CitationResult(
            citations=citations,
            verified=verified,
            documents_processed=len(to_process),
        )

    def _cite(self, query: str, result: SearchResult) -> Optional[VerifiedCitation]:
        """Best grounded answer for one chunk, or None."""
        answers = self.reader.extract(query, result.content)

        best: Optional[tuple[ExtractedAnswer, tuple[int, int]]] = None
        for answer in answers:
            span = align_quote(result.content, answer.text, answer.start, answer.end)
            if span is None:
                logger.debug(f"Rejected ungrounded quote for chunk {result.id}: {answer.text[:60]!r}")
                continue
            if best is None or answer.score > best[0].score:
                best = (answer, span)

        if best is None:
            return None

        answer, (start, end) = best
        return VerifiedCitation(
            document_name=result.document_name,
            chunk_id=result.id,
            chunk_index=result.chunk_index,
            exact_quote=result.content[start:end],
            start_char=start,
            end_char=end,
            confidence=answer.score,
            relevance_score=result.relevance,
            full_context=result.content,
            verified=answer.verified,
            truncated=answer.truncated,
        )


# =============================================================================
# Formatting
# =============================================================================

def format_citations_for_llm(citations: list[VerifiedCitation]) -> str:
    """Structured citation block for the system prompt."""
    if not citations:
        return ""

    formatted = []
    for i, citation in enumerate(citations, 1):
        confidence = round(citation.confidence * 100)
        formatted.append(
            f"[Citation {i}]\n"
            f"Source: {citation.document_name}\n"
            f"Quote: \"{citation.display_quote}\"\n"
            f"Confidence: {confidence}%"
        )

    return (
        f"{CONTEXT_HEADINGS['citations']}\n\n"
        f"{CONTEXT_HEADINGS['citation_intro']}\n\n"
        + "\n\n".join(formatted)
        + "\n\nWhen referencing these sources, use the exact quotes provided above."
    )


def format_citations_for_ui(citations: list[VerifiedCitation]) -> list[dict]:
    """Compact citation records for the UI (percentages as integers)."""
    return [
        {
            "id": c.chunk_id,
            "document": c.document_name,
            "quote": c.display_quote,
            "confidence": round(c.confidence * 100),
            "relevance": round(c.relevance_score * 100),
            "verified": c.verified,
        }
        for c in citations
    ]
