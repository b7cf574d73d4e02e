"""
Zero-Shot Classification for Counsel RAG

Operations:
- classify(text, labels): score one text against candidate labels
  (risk level, mutuality, document type)
- classify_document_type(text): best DOCUMENT_TYPE_LABELS entry for a document
- score_statement(statement, texts): probability that each text satisfies
  a natural-language statement such as "termination clause" (IQL leaves)

Implementations:
- IsaacusClassifier  -- kanon-2-classifier and kanon-universal-classifier
- LocalClassifier    -- transformers zero-shot-classification pipeline
- OfflineClassifier  -- raises ServiceUnavailableError; callers apply defaults
"""

import logging
from typing import Optional
from dataclasses import dataclass

from .config import ServiceUnavailableError
from .isaacus import IsaacusClient
from .legal_patterns import (
    DEFAULT_DOCUMENT_TYPE,
    DEFAULT_DOCUMENT_TYPE_CONFIDENCE,
    DOCUMENT_TYPE_LABELS,
    DOCUMENT_TYPE_SAMPLE_CHARS,
    MIN_DOCUMENT_TYPE_LENGTH,
)

logger = logging.getLogger(__name__)


@dataclass
class LabelScore:
    """A candidate label and its score."""
    label: str
    score: float


@dataclass
class DocumentTypeResult:
    """Whole-document type, e.g. "contract" or "court_judgment"."""
    type: str
    confidence: float

    def to_dict(self) -> dict:
        return {"type": self.type, "confidence": self.confidence}


class BaseClassifier:
    """Base class for classifiers. Subclasses implement _classify() and _score_statement()."""

    _provider_name: str = "Base"

    @property
    def available(self) -> bool:
        return True

    def classify(self, text: str, labels: list[str]) -> list[LabelScore]:
        """
        Classify text against candidate labels.

        Returns:
            LabelScore entries with scores in [0, 1], sorted by descending score
        """
        if not labels:
            return []
        scores = [
            LabelScore(label=s.label, score=min(1.0, max(0.0, float(s.score))))
            for s in self._classify(text, labels)
        ]
        return sorted(scores, key=lambda s: s.score, reverse=True)

    def classify_document_type(self, text: str) -> DocumentTypeResult:
        """
        Type a whole document from its leading sample.

        Unavailable classifiers and texts too short to judge get the
        fallback type "other" with low confidence.
        """
        sample = text.strip()[:DOCUMENT_TYPE_SAMPLE_CHARS]
        if not self.available or len(sample) < MIN_DOCUMENT_TYPE_LENGTH:
            return DocumentTypeResult(DEFAULT_DOCUMENT_TYPE, DEFAULT_DOCUMENT_TYPE_CONFIDENCE)

        scores = self.classify(sample, DOCUMENT_TYPE_LABELS)
        if not scores:
            return DocumentTypeResult(DEFAULT_DOCUMENT_TYPE, DEFAULT_DOCUMENT_TYPE_CONFIDENCE)
        return DocumentTypeResult(scores[0].label, scores[0].score)

    def score_statement(self, statement: str, texts: list[str]) -> list[float]:
        """
        Score how strongly each text satisfies a statement.

        Args:
            statement: Plain statement, e.g. "confidentiality clause"
            texts: Texts to score

        Returns:
            One score in [0, 1] per text, in input order
        """
        if not texts:
            return []
        scores = self._score_statement(statement, texts)
        if len(scores) != len(texts):
            raise ValueError(
                f"{self._provider_name} returned {len(scores)} scores for {len(texts)} texts"
            )
        return [min(1.0, max(0.0, float(s))) for s in scores]

    def _classify(self, text: str, labels: list[str]) -> list[LabelScore]:
        raise NotImplementedError("Subclasses must implement _classify()")

    def _score_statement(self, statement: str, texts: list[str]) -> list[float]:
        raise NotImplementedError("Subclasses must implement _score_statement()")


class IsaacusClassifier(BaseClassifier):
    """Classifier backed by the Isaacus classification endpoints."""

    _provider_name = "Isaacus"

    def __init__(self, client: IsaacusClient):
        self._client = client

    def _classify(self, text: str, labels: list[str]) -> list[LabelScore]:
        return [
            LabelScore(label=item["label"], score=float(item["score"]))
            for item in self._client.classify(text, labels)
        ]

    def _score_statement(self, statement: str, texts: list[str]) -> list[float]:
        results = self._client.classify_universal(f"{{IS {statement}}}", texts)
        scores = [0.0] * len(texts)
        for item in results:
            index = int(item["index"])
            if 0 <= index < len(texts):
                scores[index] = float(item["score"])
        return scores


class LocalClassifier(BaseClassifier):
    """Classifier using a local transformers zero-shot pipeline (NLI model)."""

    _provider_name = "Local"

    def __init__(self, model_name: str = "facebook/bart-large-mnli"):
        try:
            from transformers import pipeline
        except ImportError:
            raise ImportError("transformers not installed. Run: pip install transformers")
        self._pipeline = pipeline("zero-shot-classification", model=model_name)
        logger.info(f"Local classifier model loaded: {model_name}")

    def _classify(self, text: str, labels: list[str]) -> list[LabelScore]:
        output = self._pipeline(
            text,
            candidate_labels=[label.replace("_", " ") for label in labels],
        )
        by_readable = dict(zip(output["labels"], output["scores"]))
        return [
            LabelScore(label=label, score=float(by_readable.get(label.replace("_", " "), 0.0)))
            for label in labels
        ]

    def _score_statement(self, statement: str, texts: list[str]) -> list[float]:
        scores = []
        for text in texts:
            output = self._pipeline(
                text,
                candidate_labels=[statement],
                hypothesis_template="This text is a {}.",
                multi_label=True,
            )
            scores.append(float(output["scores"][0]))
        return scores


class OfflineClassifier(BaseClassifier):
    """Classifier used when no provider is configured."""

    _provider_name = "Offline"

    @property
    def available(self) -> bool:
        return False

    def _classify(self, text: str, labels: list[str]) -> list[LabelScore]:
        raise ServiceUnavailableError("No classifier configured")

    def _score_statement(self, statement: str, texts: list[str]) -> list[float]:
        raise ServiceUnavailableError("No classifier configured")


def get_classifier(settings, isaacus_client: Optional[IsaacusClient] = None) -> BaseClassifier:
    """Factory function returning the classifier selected by settings."""
    if settings.classifier_provider == "isaacus":
        return IsaacusClassifier(isaacus_client or IsaacusClient.from_settings(settings))
    if settings.classifier_provider == "local":
        return LocalClassifier(settings.extra.get("local_classifier_model", "facebook/bart-large-mnli"))
    return OfflineClassifier()
