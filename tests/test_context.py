"""
Tests for execution/counsel_rag/context.py
"""


def _citation(chunk_id, quote="Either party may terminate.", confidence=0.9):
    from execution.counsel_rag.citation import VerifiedCitation
    return VerifiedCitation(
        document_name="contract.pdf", chunk_id=chunk_id, chunk_index=0,
        exact_quote=quote, start_char=0, end_char=len(quote),
        confidence=confidence, relevance_score=0.91, full_context=quote,
    )


class TestBuildContext:

    def test_exact_format(self):
        from tests.conftest import make_result
        from execution.counsel_rag.context import build_context
        results = [
            make_result(0, "First excerpt.", 0.912, document_name="A.pdf"),
            make_result(1, "Second excerpt.", 0.5, document_name="B.pdf", rerank_score=0.734),
        ]
        assert build_context(results) == (
            "[Document 1: A.pdf (relevance: 91%)]\nFirst excerpt."
            "\n\n---\n\n"
            "[Document 2: B.pdf (relevance: 73%)]\nSecond excerpt."
        )

    def test_zero_relevance_omitted(self):
        from tests.conftest import make_result
        from execution.counsel_rag.context import build_context
        text = build_context([make_result(0, "Keyword hit.", 0.0, document_name="A.pdf")])
        assert text == "[Document 1: A.pdf]\nKeyword hit."

    def test_empty(self):
        from execution.counsel_rag.context import build_context
        assert build_context([]) == ""

    def test_citation_markers(self, sample_search_results):
        from execution.counsel_rag.context import build_context_with_citations
        citations = [_citation("chunk-0"), _citation("chunk-0", "Upon notice."), _citation("chunk-2")]
        text = build_context_with_citations(sample_search_results, citations)
        blocks = text.split("\n\n---\n\n")

        assert blocks[0].startswith("[Document 1: contract.pdf (relevance: 91%)] [1.1] [1.2]\n")
        assert blocks[1].startswith("[Document 2: contract.pdf (relevance: 84%)]\n")
        assert blocks[2].startswith("[Document 3: contract.pdf (relevance: 77%)] [3.1]\n")


class TestAssembleContext:

    def test_plain_context_when_no_extras(self, sample_search_results):
        from execution.counsel_rag.context import assemble_context, build_context
        assembled = assemble_context(sample_search_results)

        assert assembled.text == build_context(sample_search_results)
        assert assembled.citations == []
        assert assembled.clauses is None
        assert [s["id"] for s in assembled.sources] == ["chunk-0", "chunk-1", "chunk-2"]
        assert assembled.sources[0]["relevance"] == 0.91

    def test_with_citations(self, sample_search_results):
        from execution.counsel_rag.context import assemble_context
        assembled = assemble_context(sample_search_results, citations=[_citation("chunk-1")])

        assert assembled.text.startswith("## Verified Citations")
        assert "## Source Documents\n\n[Document 1:" in assembled.text
        assert "(relevance: 84%)] [2.1]" in assembled.text
        assert assembled.citations[0]["id"] == "chunk-1"
        assert assembled.citations[0]["confidence"] == 90

    def test_with_clause_analysis(self, sample_search_results):
        from execution.counsel_rag.context import assemble_context
        from execution.counsel_rag.clause_analyzer import (
            AnalyzedClause, ClauseSummary, ContractAnalysisResult,
        )
        clause = AnalyzedClause(type="termination", type_label="Termination", iql_score=0.88)
        analysis = ContractAnalysisResult(
            clauses=[clause],
            summary=ClauseSummary(total_clauses=1, medium_risk_count=1, chunks_analyzed=3),
            full_analysis=True,
        )

        assembled = assemble_context(sample_search_results, analysis=analysis)

        assert assembled.text.startswith("## Contract Clause Analysis")
        assert "## Source Documents" in assembled.text
        assert "[1.1]" not in assembled.text
        assert assembled.clauses["summary"]["total_clauses"] == 1

    def test_order_citations_then_clauses_then_documents(self, sample_search_results):
        from execution.counsel_rag.context import assemble_context
        from execution.counsel_rag.clause_analyzer import (
            AnalyzedClause, ClauseSummary, ContractAnalysisResult,
        )
        analysis = ContractAnalysisResult(
            clauses=[AnalyzedClause(type="indemnity", type_label="Indemnity", iql_score=0.9)],
            summary=ClauseSummary(total_clauses=1, medium_risk_count=1, chunks_analyzed=3),
            full_analysis=True,
        )
        text = assemble_context(sample_search_results, [_citation("chunk-0")], analysis).text
        assert (
            text.index("## Verified Citations")
            < text.index("## Contract Clause Analysis")
            < text.index("## Source Documents")
        )

    def test_empty_analysis_adds_nothing(self, sample_search_results):
        from execution.counsel_rag.context import assemble_context, build_context
        from execution.counsel_rag.clause_analyzer import create_empty_result
        assembled = assemble_context(sample_search_results, analysis=create_empty_result(3))
        assert assembled.text == build_context(sample_search_results)
        assert assembled.clauses["full_analysis"] is False
