"""
Tests for execution/counsel_rag/citation.py

Covers: quote alignment, grounding (ungrounded quotes are dropped),
        offline first-sentence fallback, failure isolation and formatting.
"""

import pytest


class TestAlignQuote:

    def test_exact_offsets_kept(self):
        from execution.counsel_rag.citation import align_quote
        context = "Fees are due. Fees are due."
        assert align_quote(context, "Fees are due.", 14, 27) == (14, 27)

    def test_wrong_offsets_realigned_to_nearest(self):
        from execution.counsel_rag.citation import align_quote
        context = "Fees are due. Late fees apply. Fees are due."
        assert align_quote(context, "Fees are due.", 29, 42) == (31, 44)
        assert align_quote(context, "Fees are due.", 2, 15) == (0, 13)

    def test_missing_quote(self):
        from execution.counsel_rag.citation import align_quote
        assert align_quote("Fees are due.", "Payment is late.", 0, 16) is None
        assert align_quote("Fees are due.", "", 0, 0) is None


class TestCitationExtractor:

    def test_citations_are_grounded(self, mock_extractor, sample_search_results):
        from execution.counsel_rag.citation import CitationExtractor
        result = CitationExtractor(mock_extractor).extract_citations(
            "Can either party terminate?", sample_search_results,
        )

        assert result.verified is True
        assert result.documents_processed == 3
        assert result.citations
        for citation in result.citations:
            assert citation.exact_quote in citation.full_context
            assert citation.full_context[citation.start_char:citation.end_char] == citation.exact_quote

    def test_sorted_by_confidence(self, sample_search_results):
        from execution.counsel_rag.citation import CitationExtractor
        from execution.counsel_rag.reader import BaseReader, ExtractedAnswer

        class ScoredReader(BaseReader):
            def _extract(self, question, context):
                score = 0.3 if "Indemnity" in context else 0.8
                quote = context.split(".")[0] + "."
                return [ExtractedAnswer(text=quote, score=score, start=0, end=len(quote))]

        result = CitationExtractor(ScoredReader()).extract_citations("q", sample_search_results)
        confidences = [c.confidence for c in result.citations]
        assert confidences == sorted(confidences, reverse=True)
        assert result.citations[-1].chunk_id == "chunk-1"

    def test_hallucinated_quotes_rejected(self, sample_search_results):
        from tests.conftest import MockExtractor
        from execution.counsel_rag.citation import CitationExtractor
        result = CitationExtractor(MockExtractor(hallucinate=True)).extract_citations("q", sample_search_results)
        assert result.citations == []

    def test_wrong_offsets_are_realigned(self, sample_search_results):
        from tests.conftest import MockExtractor
        from execution.counsel_rag.citation import CitationExtractor
        result = CitationExtractor(MockExtractor(wrong_offsets=True)).extract_citations(
            "terminate", sample_search_results,
        )
        citation = result.citations[0]
        assert citation.full_context[citation.start_char:citation.end_char] == citation.exact_quote

    def test_offline_reader_marks_unverified(self, sample_search_results):
        from execution.counsel_rag.citation import CitationExtractor
        from execution.counsel_rag.reader import OfflineReader
        result = CitationExtractor(OfflineReader()).extract_citations("q", sample_search_results)

        assert result.verified is False
        assert len(result.citations) == 3
        first = next(c for c in result.citations if c.chunk_id == "chunk-0")
        assert first.exact_quote == "Section 4.2 Termination for Convenience."
        assert first.verified is False

    def test_reader_failure_isolated(self, sample_search_results):
        from execution.counsel_rag.citation import CitationExtractor
        from execution.counsel_rag.reader import BaseReader, ExtractedAnswer

        class FlakyReader(BaseReader):
            def _extract(self, question, context):
                if "Indemnity" in context:
                    raise RuntimeError("reader timeout")
                quote = context.split(".")[0] + "."
                return [ExtractedAnswer(text=quote, score=0.7, start=0, end=len(quote))]

        result = CitationExtractor(FlakyReader()).extract_citations("q", sample_search_results)
        assert {c.chunk_id for c in result.citations} == {"chunk-0", "chunk-2"}

    def test_max_citations_limits_processing(self, mock_extractor, sample_search_results):
        from execution.counsel_rag.citation import CitationExtractor
        result = CitationExtractor(mock_extractor).extract_citations(
            "party", sample_search_results, max_citations=1,
        )
        assert result.documents_processed == 1
        assert mock_extractor.calls == 1

    def test_empty_results(self, mock_extractor):
        from execution.counsel_rag.citation import CitationExtractor
        result = CitationExtractor(mock_extractor).extract_citations("q", [])
        assert result.citations == []
        assert result.verified is False

    def test_relevance_uses_rerank_score(self, mock_extractor):
        from tests.conftest import make_result
        from execution.counsel_rag.citation import CitationExtractor
        results = [make_result(0, "Either party may terminate on notice.", 0.6, rerank_score=0.9)]
        citation = CitationExtractor(mock_extractor).extract_citations("terminate", results).citations[0]
        assert citation.relevance_score == 0.9


class TestFormatting:

    def _citation(self, **overrides):
        from execution.counsel_rag.citation import VerifiedCitation
        values = dict(
            document_name="License.pdf", chunk_id="c1", chunk_index=0,
            exact_quote="Either party may terminate.", start_char=0, end_char=27,
            confidence=0.876, relevance_score=0.91, full_context="Either party may terminate.",
        )
        values.update(overrides)
        return VerifiedCitation(**values)

    def test_llm_block(self):
        from execution.counsel_rag.citation import format_citations_for_llm
        text = format_citations_for_llm([self._citation()])
        assert text.startswith("## Verified Citations")
        assert "[Citation 1]" in text
        assert "Source: License.pdf" in text
        assert 'Quote: "Either party may terminate."' in text
        assert "Confidence: 88%" in text

    def test_llm_block_empty(self):
        from execution.counsel_rag.citation import format_citations_for_llm
        assert format_citations_for_llm([]) == ""

    def test_ui_records(self):
        from execution.counsel_rag.citation import format_citations_for_ui
        records = format_citations_for_ui([self._citation(verified=False)])
        assert records == [{
            "id": "c1",
            "document": "License.pdf",
            "quote": "Either party may terminate.",
            "confidence": 88,
            "relevance": 91,
            "verified": False,
        }]

    def test_truncated_quote_rendered_with_ellipsis(self):
        from execution.counsel_rag.citation import format_citations_for_llm, format_citations_for_ui
        citation = self._citation(truncated=True)
        assert citation.exact_quote == "Either party may terminate."
        assert 'Quote: "Either party may terminate...."' in format_citations_for_llm([citation])
        assert format_citations_for_ui([citation])[0]["quote"] == "Either party may terminate...."
