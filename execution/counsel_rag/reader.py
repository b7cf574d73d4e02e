"""
Extractive Question Answering for Counsel RAG

Finds the exact span of a context that answers a question. Used for
verbatim citations and for pulling the text of detected clauses.

Implementations:
- IsaacusReader  -- kanon-2-reader (default)
- LocalReader    -- transformers question-answering pipeline
- OfflineReader  -- first sentence of the context, marked unverified
"""

import logging
from typing import Optional
from dataclasses import dataclass, replace

from .isaacus import IsaacusClient
from .legal_patterns import SENTENCE_END_PATTERN

logger = logging.getLogger(__name__)


# First-sentence fallback limits (characters)
FIRST_SENTENCE_MAX = 300
FALLBACK_QUOTE_MAX = 200
FALLBACK_MIN_WORD_CUT = 100
FALLBACK_CONFIDENCE = 0.5


@dataclass
class ExtractedAnswer:
    """A span of the context that answers the question."""
    text: str
    score: float
    start: int
    end: int
    verified: bool = True
    truncated: bool = False  # excerpt was cut mid-sentence

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "score": self.score,
            "start": self.start,
            "end": self.end,
            "verified": self.verified,
            "truncated": self.truncated,
        }


def first_sentence_span(text: str) -> tuple[int, int]:
    """
    Locate a short leading excerpt of text.

    The first sentence if it ends within FIRST_SENTENCE_MAX characters,
    else the whole text if it is short, else a cut at the last word
    boundary before FALLBACK_QUOTE_MAX.

    Returns:
        (start, end) offsets into text
    """
    leading = len(text) - len(text.lstrip())
    body = text.strip()
    if not body:
        return (0, 0)

    match = SENTENCE_END_PATTERN.search(body)
    if match and 0 < match.start() < FIRST_SENTENCE_MAX:
        return (leading, leading + match.start() + 1)

    if len(body) <= FALLBACK_QUOTE_MAX:
        return (leading, leading + len(body))

    cut = body.rfind(" ", 0, FALLBACK_QUOTE_MAX)
    if cut <= FALLBACK_MIN_WORD_CUT:
        cut = FALLBACK_QUOTE_MAX
    return (leading, leading + cut)


def is_truncated_span(text: str, end: int) -> bool:
    """Whether a leading excerpt ending at end stops short of a sentence end."""
    return end < len(text.rstrip()) and text[end - 1] not in ".!?"


def extract_first_sentence(text: str) -> str:
    """Short leading excerpt of text, with "..." when it was cut mid-sentence."""
    start, end = first_sentence_span(text)
    excerpt = text[start:end]
    if excerpt and is_truncated_span(text, end):
        excerpt += "..."
    return excerpt


class BaseReader:
    """Base class for extractive readers. Subclasses implement _extract()."""

    _provider_name: str = "Base"

    @property
    def available(self) -> bool:
        return True

    def extract(self, question: str, context: str) -> list[ExtractedAnswer]:
        """
        Extract answer spans from context.

        Args:
            question: Natural-language question
            context: Text to search for the answer

        Returns:
            Answers with scores in [0, 1], sorted by descending score (may be empty)
        """
        if not context.strip():
            return []
        answers = [
            replace(a, score=min(1.0, max(0.0, float(a.score))))
            for a in self._extract(question, context)
        ]
        return sorted(answers, key=lambda a: a.score, reverse=True)

    def _extract(self, question: str, context: str) -> list[ExtractedAnswer]:
        raise NotImplementedError("Subclasses must implement _extract()")


class IsaacusReader(BaseReader):
    """Extractive QA using Isaacus kanon-2-reader."""

    _provider_name = "Isaacus"

    def __init__(self, client: IsaacusClient):
        self._client = client

    def _extract(self, question: str, context: str) -> list[ExtractedAnswer]:
        answers = []
        for item in self._client.extract(question, context):
            text = item.get("answer") or item.get("text") or ""
            if not text:
                continue
            answers.append(ExtractedAnswer(
                text=text,
                score=float(item.get("score", 0.0)),
                start=int(item.get("start", -1)),
                end=int(item.get("end", -1)),
            ))
        return answers


class LocalReader(BaseReader):
    """Extractive QA with a local transformers question-answering pipeline."""

    _provider_name = "Local"

    def __init__(self, model_name: str = "deepset/roberta-base-squad2", top_k: int = 3):
        try:
            from transformers import pipeline
        except ImportError:
            raise ImportError("transformers not installed. Run: pip install transformers")
        self._pipeline = pipeline("question-answering", model=model_name)
        self.top_k = top_k
        logger.info(f"Local reader model loaded: {model_name}")

    def _extract(self, question: str, context: str) -> list[ExtractedAnswer]:
        output = self._pipeline(question=question, context=context, top_k=self.top_k)
        if isinstance(output, dict):
            output = [output]
        return [
            ExtractedAnswer(
                text=item["answer"],
                score=float(item["score"]),
                start=int(item["start"]),
                end=int(item["end"]),
            )
            for item in output
            if item.get("answer")
        ]


class OfflineReader(BaseReader):
    """Reader used when no provider is configured: deterministic first-sentence excerpt."""

    _provider_name = "Offline"

    @property
    def available(self) -> bool:
        return False

    def _extract(self, question: str, context: str) -> list[ExtractedAnswer]:
        start, end = first_sentence_span(context)
        if end <= start:
            return []
        return [ExtractedAnswer(
            text=context[start:end],
            score=FALLBACK_CONFIDENCE,
            start=start,
            end=end,
            verified=False,
            truncated=is_truncated_span(context, end),
        )]


def get_reader(settings, isaacus_client: Optional[IsaacusClient] = None) -> BaseReader:
    """Factory function returning the reader selected by settings."""
    if settings.reader_provider == "isaacus":
        return IsaacusReader(isaacus_client or IsaacusClient.from_settings(settings))
    if settings.reader_provider == "local":
        return LocalReader(settings.extra.get("local_reader_model", "deepset/roberta-base-squad2"))
    return OfflineReader()
