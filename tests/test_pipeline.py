"""
Tests for execution/counsel_rag/pipeline.py

Covers: service wiring from settings (offline and with a shared Isaacus
        client), and the full ingest -> query path with mock providers.
"""

from unittest.mock import MagicMock


class TestBuildServices:

    def test_offline_settings(self, settings):
        from execution.counsel_rag.pipeline import build_services
        from execution.counsel_rag.vector_store import InMemoryVectorStore
        from execution.counsel_rag.embeddings import OfflineEmbeddingService
        from execution.counsel_rag.reader import OfflineReader
        from execution.counsel_rag.classifier import OfflineClassifier

        services = build_services(settings)

        assert isinstance(services.store, InMemoryVectorStore)
        assert isinstance(services.embeddings, OfflineEmbeddingService)
        assert isinstance(services.reader, OfflineReader)
        assert isinstance(services.classifier, OfflineClassifier)
        assert services.isaacus_client is None
        assert services.retriever.store is services.store
        assert services.clause_analyzer.defaults.risk_level == "medium"
        services.close()

    def test_shared_isaacus_client(self, memory_store, monkeypatch):
        from execution.counsel_rag.config import RAGSettings
        from execution.counsel_rag.pipeline import build_services
        from execution.counsel_rag.isaacus import IsaacusClient

        client = MagicMock()
        factory = MagicMock(return_value=client)
        monkeypatch.setattr(IsaacusClient, "from_settings", factory)

        settings = RAGSettings(
            isaacus_api_key="ik",
            embedding_provider="isaacus",
            rerank_provider="isaacus",
            reader_provider="isaacus",
            classifier_provider="isaacus",
            vector_store="memory",
        )
        settings.resolve_providers()
        services = build_services(settings, store=memory_store)

        factory.assert_called_once()
        assert services.isaacus_client is client
        assert services.classifier._client is client
        assert services.reader._client is client

        services.close()
        client.close.assert_called_once()


class TestOfflinePipeline:

    def test_ingest_and_query_without_providers(self, settings, sample_document_text):
        from execution.counsel_rag.pipeline import CounselPipeline

        pipeline = CounselPipeline.from_settings(settings)
        ingest = pipeline.ingest_document("doc-1", "License.pdf", sample_document_text, user_id="alice")
        assert ingest.embedded_chunks == 0
        assert ingest.status == "ready"

        outcome = pipeline.build_query_context(
            "termination notice", user_id="alice", analyze_clauses=True,
        )

        assert outcome.retrieval.search_mode == "keyword"
        assert outcome.retrieval.results
        assert outcome.citations.verified is False
        assert outcome.analysis.full_analysis is False
        assert outcome.context.text.startswith("## Verified Citations")
        assert "[Document 1: License.pdf] [1.1]" in outcome.context.text
        assert all(c["verified"] is False for c in outcome.context.citations)


class TestCounselPipeline:

    def test_query_context_with_mocks(self, mock_services, sample_document_text):
        from execution.counsel_rag.pipeline import CounselPipeline
        pipeline = CounselPipeline(mock_services)
        pipeline.ingest_document("doc-1", "License.pdf", sample_document_text, user_id="alice")

        outcome = pipeline.build_query_context(
            "Either party may terminate this Agreement", user_id="alice", analyze_clauses=True,
        )

        assert outcome.retrieval.search_mode == "vector"
        assert outcome.retrieval.reranked is True
        assert "terminate" in outcome.retrieval.results[0].content.lower()
        assert outcome.citations.verified is True
        for citation in outcome.citations.citations:
            assert citation.exact_quote in citation.full_context

        assert outcome.analysis.full_analysis is True
        assert "termination" in {c.type for c in outcome.analysis.clauses}
        assert "## Contract Clause Analysis" in outcome.context.text
        assert outcome.context.clauses["full_analysis"] is True
        assert len(outcome.context.sources) == len(outcome.retrieval.results)

    def test_clause_analysis_off_by_default(self, mock_services, sample_document_text):
        from execution.counsel_rag.pipeline import CounselPipeline
        pipeline = CounselPipeline(mock_services)
        pipeline.ingest_document("doc-1", "License.pdf", sample_document_text, user_id="alice")

        outcome = pipeline.build_query_context("confidential information", user_id="alice")
        assert outcome.analysis is None
        assert outcome.context.clauses is None

    def test_other_tenant_gets_nothing(self, mock_services, sample_document_text):
        from execution.counsel_rag.pipeline import CounselPipeline
        pipeline = CounselPipeline(mock_services)
        pipeline.ingest_document("doc-1", "License.pdf", sample_document_text, user_id="alice")

        outcome = pipeline.build_query_context("terminate", user_id="bob")
        assert outcome.retrieval.results == []
        assert outcome.context.text == ""

    def test_analyze_document(self, mock_services, sample_document_text):
        from execution.counsel_rag.pipeline import CounselPipeline
        pipeline = CounselPipeline(mock_services)
        pipeline.ingest_document("doc-1", "License.pdf", sample_document_text, user_id="alice")

        analysis = pipeline.analyze_document("doc-1", "alice")
        types = {c.type for c in analysis.clauses}
        assert analysis.full_analysis is True
        assert {"indemnity", "termination", "confidentiality"} <= types
        assert analysis.summary.high_risk_count >= 1

    def test_reembed_document(self, mock_services, sample_document_text):
        from execution.counsel_rag.pipeline import CounselPipeline
        pipeline = CounselPipeline(mock_services)
        pipeline.ingest_document("doc-1", "License.pdf", sample_document_text, user_id="alice")
        assert pipeline.reembed_document("doc-1", "alice") == 0

    def test_tenant_without_documents_skips_retrieval(self, mock_services, monkeypatch):
        from execution.counsel_rag.pipeline import CounselPipeline
        retrieve = MagicMock()
        monkeypatch.setattr(mock_services.retriever, "retrieve", retrieve)

        outcome = CounselPipeline(mock_services).build_query_context(
            "terminate", user_id="alice", analyze_clauses=True,
        )

        retrieve.assert_not_called()
        assert outcome.retrieval.query == "terminate"
        assert outcome.retrieval.results == []
        assert outcome.citations.citations == []
        assert outcome.analysis is None
        assert outcome.context.text == ""

    def test_processing_document_not_searched(self, mock_services, monkeypatch):
        from execution.counsel_rag.pipeline import CounselPipeline
        mock_services.store.upsert_document("doc-1", "License.pdf", "alice")
        retrieve = MagicMock()
        monkeypatch.setattr(mock_services.retriever, "retrieve", retrieve)

        CounselPipeline(mock_services).build_query_context("terminate", user_id="alice")
        retrieve.assert_not_called()

    def test_empty_matter_skips_retrieval(self, mock_services, sample_document_text, monkeypatch):
        from execution.counsel_rag.pipeline import CounselPipeline
        pipeline = CounselPipeline(mock_services)
        mock_services.ingestor.ingest("doc-1", "License.pdf", sample_document_text, "alice", matter_id="m1")
        retrieve = MagicMock(wraps=mock_services.retriever.retrieve)
        monkeypatch.setattr(mock_services.retriever, "retrieve", retrieve)

        pipeline.build_query_context("terminate", user_id="alice", matter_id="m2")
        retrieve.assert_not_called()
        assert pipeline.build_query_context(
            "Either party may terminate this Agreement", user_id="alice", matter_id="m1",
        ).retrieval.results
        retrieve.assert_called_once()

    def test_citations_and_clause_analysis_run_concurrently(self, mock_services, sample_document_text, monkeypatch):
        import threading
        from execution.counsel_rag.pipeline import CounselPipeline
        pipeline = CounselPipeline(mock_services)
        pipeline.ingest_document("doc-1", "License.pdf", sample_document_text, user_id="alice")

        # Each side waits for the other; run one after the other, the barrier times out
        barrier = threading.Barrier(2, timeout=5)
        extract = mock_services.citation_extractor.extract_citations
        analyze = mock_services.clause_analyzer.analyze_contract_clauses

        def extract_together(*args, **kwargs):
            barrier.wait()
            return extract(*args, **kwargs)

        def analyze_together(*args, **kwargs):
            barrier.wait()
            return analyze(*args, **kwargs)

        monkeypatch.setattr(mock_services.citation_extractor, "extract_citations", extract_together)
        monkeypatch.setattr(mock_services.clause_analyzer, "analyze_contract_clauses", analyze_together)

        outcome = pipeline.build_query_context(
            "Either party may terminate this Agreement", user_id="alice", analyze_clauses=True,
        )
        assert outcome.citations.citations
        assert outcome.analysis.full_analysis is True

    def test_cancel_event_reaches_both_branches(self, mock_services, sample_document_text, monkeypatch):
        import threading
        from execution.counsel_rag.pipeline import CounselPipeline
        pipeline = CounselPipeline(mock_services)
        pipeline.ingest_document("doc-1", "License.pdf", sample_document_text, user_id="alice")

        extract = MagicMock(wraps=mock_services.citation_extractor.extract_citations)
        analyze = MagicMock(wraps=mock_services.clause_analyzer.analyze_contract_clauses)
        monkeypatch.setattr(mock_services.citation_extractor, "extract_citations", extract)
        monkeypatch.setattr(mock_services.clause_analyzer, "analyze_contract_clauses", analyze)

        event = threading.Event()
        pipeline.build_query_context(
            "Either party may terminate this Agreement", user_id="alice",
            analyze_clauses=True, cancel_event=event,
        )
        assert extract.call_args.kwargs["cancel_event"] is event
        assert analyze.call_args.kwargs["cancel_event"] is event
