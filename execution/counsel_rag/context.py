"""
Context assembly for the language model prompt.

Renders ranked excerpts, optionally preceded by verified citations and a
clause analysis block. Pure functions; nothing here calls a service.
"""

from typing import Optional
from dataclasses import dataclass, field

from .citation import VerifiedCitation, format_citations_for_llm, format_citations_for_ui
from .clause_analyzer import ContractAnalysisResult, build_clause_analysis_context
from .vector_store import SearchResult
from .legal_patterns import CONTEXT_HEADINGS, DOCUMENT_SEPARATOR


@dataclass
class AssembledContext:
    """Prompt context plus the structured pieces it was built from."""
    text: str
    sources: list[dict] = field(default_factory=list)
    citations: list[dict] = field(default_factory=list)
    clauses: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "sources": self.sources,
            "citations": self.citations,
            "clauses": self.clauses,
        }


def _document_label(position: int, result: SearchResult) -> str:
    score = result.relevance
    score_str = f" (relevance: {score * 100:.0f}%)" if score > 0 else ""
    return f"[Document {position}: {result.document_name}{score_str}]"


def build_context(results: list[SearchResult]) -> str:
    """Ranked excerpts as labelled blocks."""
    return DOCUMENT_SEPARATOR.join(
        f"{_document_label(i, r)}\n{r.content}"
        for i, r in enumerate(results, 1)
    )


def build_context_with_citations(
    results: list[SearchResult],
    citations: list[VerifiedCitation],
) -> str:
    """
    Like build_context(), but blocks that carry citations get [N.M] markers.

    N is the block position and M numbers the citations taken from that chunk.
    """
    per_chunk: dict[str, int] = {}
    for citation in citations:
        per_chunk[citation.chunk_id] = per_chunk.get(citation.chunk_id, 0) + 1

    blocks = []
    for i, result in enumerate(results, 1):
        count = per_chunk.get(result.id, 0)
        marker = ""
        if count:
            marker = " " + " ".join(f"[{i}.{m}]" for m in range(1, count + 1))
        blocks.append(f"{_document_label(i, result)}{marker}\n{result.content}")
    return DOCUMENT_SEPARATOR.join(blocks)


def assemble_context(
    results: list[SearchResult],
    citations: Optional[list[VerifiedCitation]] = None,
    analysis: Optional[ContractAnalysisResult] = None,
) -> AssembledContext:
    """
    Build the full prompt context.

    Args:
        results: Ranked search results
        citations: Verified citations for those results
        analysis: Clause analysis over the results

    Returns:
        AssembledContext; with neither citations nor analysis the text is
        exactly build_context(results)
    """
    sources = [
        {
            "id": r.id,
            "document_id": r.document_id,
            "document_name": r.document_name,
            "chunk_index": r.chunk_index,
            "relevance": r.relevance,
        }
        for r in results
    ]

    sections = []
    if citations:
        sections.append(format_citations_for_llm(citations))
    clause_block = build_clause_analysis_context(analysis) if analysis is not None else ""
    if clause_block:
        sections.append(clause_block)

    if not sections:
        text = build_context(results)
    else:
        documents = (
            build_context_with_citations(results, citations) if citations
            else build_context(results)
        )
        if documents:
            sections.append(f"{CONTEXT_HEADINGS['documents']}\n\n{documents}")
        text = "\n\n".join(sections)

    return AssembledContext(
        text=text,
        sources=sources,
        citations=format_citations_for_ui(citations or []),
        clauses=analysis.to_dict() if analysis is not None else None,
    )
