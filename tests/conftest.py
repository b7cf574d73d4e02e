"""
Shared fixtures and test utilities for Counsel RAG tests.

Provides mock services, sample data, and reusable fixtures so that all tests
can run without API keys, databases, or external network access.
"""

import re
import sys
import hashlib
from pathlib import Path

import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup - ensure the execution package is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

from execution.counsel_rag.config import RAGSettings
from execution.counsel_rag.embeddings import BaseEmbeddingService, EmbeddingConfig
from execution.counsel_rag.reranker import BaseReranker, RerankScore
from execution.counsel_rag.reader import BaseReader, ExtractedAnswer
from execution.counsel_rag.classifier import BaseClassifier, LabelScore
from execution.counsel_rag.vector_store import SearchResult

# ---------------------------------------------------------------------------
# Sample legal document text
# ---------------------------------------------------------------------------
SAMPLE_DOCUMENT = """
SOFTWARE LICENSE AGREEMENT

This Software License Agreement ("Agreement") is entered into as of January 1, 2024
("Effective Date") by and between TechCorp Inc., a Delaware corporation ("Licensor"),
and ClientCo LLC, a California limited liability company ("Licensee").

ARTICLE I - DEFINITIONS

Section 1.1 "Software" means the proprietary software application known as "LegalAI Pro"
including all updates, modifications, and enhancements.

Section 1.2 "Documentation" means user manuals, technical specifications, and other
materials describing the Software's functionality.

ARTICLE II - LICENSE GRANT

Section 2.1 Grant of License. Subject to the terms of this Agreement, Licensor hereby
grants to Licensee a non-exclusive, non-transferable license to use the Software.

Section 2.2 Restrictions. Licensee shall not:
(a) Modify, adapt, or create derivative works of the Software;
(b) Reverse engineer or decompile the Software;
(c) Sublicense or transfer the Software to third parties.

ARTICLE III - FEES AND PAYMENT

Section 3.1 License Fees. Licensee shall pay Licensor an annual license fee of
$50,000 USD, payable in advance.

Section 3.2 Payment Terms. All payments are due within thirty (30) days of invoice date.

ARTICLE IV - TERM AND TERMINATION

Section 4.1 Term. This Agreement shall commence on the Effective Date and continue
for a period of one (1) year, unless earlier terminated.

Section 4.2 Termination for Convenience. Either party may terminate this Agreement
upon sixty (60) days written notice.

Section 4.3 Termination for Breach. Either party may terminate immediately if the
other party materially breaches this Agreement and fails to cure within thirty (30) days.

ARTICLE V - CONFIDENTIALITY

Section 5.1 Confidential Information. Each party agrees to maintain the confidentiality
of the other party's proprietary information.

ARTICLE VI - INDEMNIFICATION

Section 6.1 Indemnity. Licensee shall indemnify, defend and hold harmless Licensor from
any and all claims, losses and damages of any kind, without limitation.

ARTICLE VII - LIMITATION OF LIABILITY

Section 7.1 Cap on Damages. IN NO EVENT SHALL EITHER PARTY'S LIABILITY EXCEED THE
AMOUNTS PAID BY LICENSEE IN THE TWELVE (12) MONTHS PRECEDING THE CLAIM.

ARTICLE VIII - GENERAL PROVISIONS

Section 8.1 Governing Law. This Agreement shall be governed by the laws of the
State of Delaware.
"""

_WORD_RE = re.compile(r"[a-z0-9]+")


def _words(text):
    return _WORD_RE.findall(text.lower())


# ---------------------------------------------------------------------------
# Mock embedding service
# ---------------------------------------------------------------------------

class MockEmbeddingService(BaseEmbeddingService):
    """
    Deterministic bag-of-words embeddings -- never calls external APIs.

    Texts sharing words get similar vectors. Batch calls listed in
    fail_calls (1-based) raise, to exercise partial-failure handling.
    """

    _provider_name = "Mock"

    def __init__(self, dimensions=64, batch_size=10, fail_calls=()):
        self.calls = 0
        self.fail_calls = set(fail_calls)
        super().__init__(EmbeddingConfig(
            provider="mock", model="mock", dimensions=dimensions, batch_size=batch_size,
        ))

    def vector(self, text):
        dims = self.config.dimensions
        vec = [0.0] * dims
        for word in _words(text):
            vec[int(hashlib.sha256(word.encode()).hexdigest()[:8], 16) % dims] += 1.0
        return vec

    def _embed_batch(self, texts, input_type):
        self.calls += 1
        if self.calls in self.fail_calls:
            raise RuntimeError(f"mock embedding failure on call {self.calls}")
        return [self.vector(t) for t in texts]


# ---------------------------------------------------------------------------
# Mock reranker
# ---------------------------------------------------------------------------

class MockReranker(BaseReranker):
    """Scores by query-term overlap, or returns fixed scores when given."""

    _provider_name = "Mock"

    def __init__(self, scores=None, fail=False):
        self.scores = scores
        self.fail = fail
        self.calls = 0

    def _rerank(self, query, documents, top_k):
        self.calls += 1
        if self.fail:
            raise RuntimeError("mock reranker down")
        if self.scores is not None:
            return [RerankScore(index=i, score=s) for i, s in enumerate(self.scores[:len(documents)])]
        terms = set(_words(query))
        return [
            RerankScore(index=i, score=len(terms & set(_words(doc))) / max(1, len(terms)))
            for i, doc in enumerate(documents)
        ]


# ---------------------------------------------------------------------------
# Mock extractive reader
# ---------------------------------------------------------------------------

class MockExtractor(BaseReader):
    """
    Returns the first sentence containing a question word.

    With hallucinate=True it answers with text that is not in the context.
    With wrong_offsets=True the reported offsets are shifted.
    """

    _provider_name = "Mock"

    def __init__(self, hallucinate=False, wrong_offsets=False, fail=False):
        self.hallucinate = hallucinate
        self.wrong_offsets = wrong_offsets
        self.fail = fail
        self.calls = 0

    def _extract(self, question, context):
        self.calls += 1
        if self.fail:
            raise RuntimeError("mock reader down")
        if self.hallucinate:
            return [ExtractedAnswer(text="The parties agree to arbitrate in Paris.", score=0.95, start=0, end=40)]

        terms = set(_words(question)) - {"what", "is", "the", "of", "exact", "text", "provision"}
        for match in re.finditer(r"[^.]+\.", context):
            sentence = match.group(0).strip()
            if terms & set(_words(sentence)):
                start = context.find(sentence, match.start())
                offset = 3 if self.wrong_offsets else 0
                return [ExtractedAnswer(
                    text=sentence, score=0.9, start=start + offset, end=start + offset + len(sentence),
                )]
        return []


# ---------------------------------------------------------------------------
# Mock classifier
# ---------------------------------------------------------------------------

DEFAULT_STATEMENT_RULES = [
    # (words in the statement, keyword in the text, score)
    ("indemnity", "indemnify", 0.92),
    ("broad indemnification", "without limitation", 0.81),
    ("termination", "terminate", 0.88),
    ("confidentiality", "confidential", 0.85),
    ("limitation of liability", "liability", 0.75),
    ("governing law", "governed by", 0.9),
    ("obligating", "shall", 0.7),
]

DEFAULT_LABEL_RULES = [
    # (keyword in the text, label, score)
    ("without limitation", "high_risk_unusual_or_onerous", 0.83),
    ("either party", "medium_risk_notable_obligation", 0.66),
    ("confidential", "low_risk_standard_clause", 0.72),
    ("either party", "mutual_obligation", 0.8),
    ("each party", "mutual_obligation", 0.8),
    ("licensee shall", "unilateral_obligation", 0.77),
    ("this agreement", "contract", 0.91),
]


class MockClassifier(BaseClassifier):
    """Keyword-rule classifier with deterministic scores."""

    _provider_name = "Mock"

    def __init__(self, statement_rules=None, label_rules=None, fail_classify=False):
        self.statement_rules = DEFAULT_STATEMENT_RULES if statement_rules is None else statement_rules
        self.label_rules = DEFAULT_LABEL_RULES if label_rules is None else label_rules
        self.fail_classify = fail_classify
        self.statement_calls = []

    def _score_statement(self, statement, texts):
        self.statement_calls.append(statement)
        scores = []
        for text in texts:
            lowered = text.lower()
            score = 0.05
            for words, keyword, value in self.statement_rules:
                if words in statement and keyword in lowered:
                    score = max(score, value)
            scores.append(score)
        return scores

    def _classify(self, text, labels):
        if self.fail_classify:
            raise RuntimeError("mock classifier down")
        lowered = text.lower()
        result = []
        for label in labels:
            score = 0.1
            for keyword, rule_label, value in self.label_rules:
                if rule_label == label and keyword in lowered:
                    score = max(score, value)
            result.append(LabelScore(label=label, score=score))
        return result


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_document_text():
    """Return the sample contract text."""
    return SAMPLE_DOCUMENT


@pytest.fixture
def settings():
    """Offline settings with an in-memory store (no env lookups)."""
    s = RAGSettings(
        embedding_provider="offline",
        rerank_provider="offline",
        reader_provider="offline",
        classifier_provider="offline",
        vector_store="memory",
        embedding_dimensions=64,
    )
    s.resolve_providers()
    return s


@pytest.fixture
def mock_embedding_service():
    return MockEmbeddingService(dimensions=64)


@pytest.fixture
def mock_reranker():
    return MockReranker()


@pytest.fixture
def mock_extractor():
    return MockExtractor()


@pytest.fixture
def mock_classifier():
    return MockClassifier()


@pytest.fixture
def memory_store():
    from execution.counsel_rag.vector_store import InMemoryVectorStore, VectorStoreConfig
    store = InMemoryVectorStore(VectorStoreConfig(embedding_dimensions=64))
    store.connect()
    return store


@pytest.fixture
def ingestor(memory_store, mock_embedding_service):
    from execution.counsel_rag.chunker import LegalChunker, ChunkOptions
    from execution.counsel_rag.ingest import DocumentIngestor
    chunker = LegalChunker(ChunkOptions(chunk_size=500, chunk_overlap=50, min_chunk_size=100))
    return DocumentIngestor(chunker, mock_embedding_service, memory_store)


@pytest.fixture
def mock_services(settings, memory_store, mock_embedding_service, mock_classifier):
    """CounselServices assembled from mock providers and the in-memory store."""
    from execution.counsel_rag.chunker import LegalChunker, ChunkOptions
    from execution.counsel_rag.retriever import VectorRetriever, RetrievalConfig
    from execution.counsel_rag.citation import CitationExtractor
    from execution.counsel_rag.iql import ClauseScanner
    from execution.counsel_rag.clause_analyzer import ClauseAnalyzer
    from execution.counsel_rag.ingest import DocumentIngestor
    from execution.counsel_rag.pipeline import CounselServices

    chunker = LegalChunker(ChunkOptions(chunk_size=500, chunk_overlap=50, min_chunk_size=100))
    reranker = MockReranker()
    reader = MockExtractor()
    scanner = ClauseScanner(mock_classifier)
    return CounselServices(
        settings=settings,
        store=memory_store,
        chunker=chunker,
        embeddings=mock_embedding_service,
        reranker=reranker,
        reader=reader,
        classifier=mock_classifier,
        retriever=VectorRetriever(
            memory_store, mock_embedding_service, reranker, RetrievalConfig(similarity_threshold=0.1),
        ),
        citation_extractor=CitationExtractor(reader),
        scanner=scanner,
        clause_analyzer=ClauseAnalyzer(scanner, mock_classifier, reader),
        ingestor=DocumentIngestor(chunker, mock_embedding_service, memory_store, mock_classifier),
    )


def make_result(index, content, similarity, document_name="contract.pdf", rerank_score=None):
    """Build a SearchResult for tests."""
    return SearchResult(
        id=f"chunk-{index}",
        document_id="doc-1",
        document_name=document_name,
        chunk_index=index,
        content=content,
        similarity=similarity,
        rerank_score=rerank_score,
    )


@pytest.fixture
def sample_search_results():
    """Three ranked results drawn from the sample contract."""
    return [
        make_result(
            0,
            "Section 4.2 Termination for Convenience. Either party may terminate this "
            "Agreement upon sixty (60) days written notice.",
            0.91,
        ),
        make_result(
            1,
            "Section 6.1 Indemnity. Licensee shall indemnify, defend and hold harmless "
            "Licensor from any and all claims, losses and damages of any kind, without limitation.",
            0.84,
        ),
        make_result(
            2,
            "Section 5.1 Confidential Information. Each party agrees to maintain the "
            "confidentiality of the other party's proprietary information.",
            0.77,
        ),
    ]
