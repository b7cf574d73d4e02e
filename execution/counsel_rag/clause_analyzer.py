"""
Contract Clause Analysis

Detects clauses with IQL templates, then enriches each detection in
parallel with:
- an exact quote (extractive reader)
- a risk level (low / medium / high)
- mutuality (mutual vs unilateral obligation)

A failed or timed-out enrichment call leaves the configured defaults in
place. Clauses are ordered high -> medium -> low risk, then by IQL score.
"""

import logging
import threading
from typing import Optional
from dataclasses import dataclass, field

from .concurrency import run_bounded
from .classifier import BaseClassifier
from .config import ServiceUnavailableError
from .citation import align_quote
from .iql import ClauseScanner, ClauseMatch, IQL_TEMPLATES, obligating, parse_iql, And
from .reader import BaseReader, ExtractedAnswer
from .legal_patterns import (
    RISK_LABELS,
    RISK_LABEL_TO_LEVEL,
    RISK_ORDER,
    MUTUALITY_LABELS,
    MIN_CLASSIFIABLE_LENGTH,
    CLAUSE_QUOTE_QUESTION,
    CONTEXT_HEADINGS,
    clause_label,
)

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentDefaults:
    """Values used when risk or mutuality cannot be determined."""
    risk_level: str = "medium"
    risk_confidence: float = 0.5
    mutual: bool = True

    @classmethod
    def from_settings(cls, settings) -> "EnrichmentDefaults":
        return cls(
            risk_level=settings.default_risk_level,
            risk_confidence=settings.default_risk_confidence,
            mutual=settings.default_mutual,
        )


@dataclass
class AnalyzedClause:
    """A detected clause with its enrichment."""
    type: str
    type_label: str
    iql_score: float
    risk_level: str = "medium"
    risk_confidence: float = 0.5
    is_mutual: bool = True
    chunk_text: str = ""
    chunk_index: int = 0
    exact_quote: Optional[str] = None
    quote_confidence: Optional[float] = None
    quote_start: Optional[int] = None
    quote_end: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "type_label": self.type_label,
            "iql_score": self.iql_score,
            "risk_level": self.risk_level,
            "risk_confidence": self.risk_confidence,
            "is_mutual": self.is_mutual,
            "chunk_index": self.chunk_index,
            "exact_quote": self.exact_quote,
            "quote_confidence": self.quote_confidence,
            "quote_start": self.quote_start,
            "quote_end": self.quote_end,
        }


@dataclass
class ClauseSummary:
    total_clauses: int = 0
    high_risk_count: int = 0
    medium_risk_count: int = 0
    low_risk_count: int = 0
    chunks_analyzed: int = 0

    def to_dict(self) -> dict:
        return {
            "total_clauses": self.total_clauses,
            "high_risk_count": self.high_risk_count,
            "medium_risk_count": self.medium_risk_count,
            "low_risk_count": self.low_risk_count,
            "chunks_analyzed": self.chunks_analyzed,
        }


@dataclass
class ContractAnalysisResult:
    """Full contract analysis."""
    clauses: list[AnalyzedClause] = field(default_factory=list)
    high_risk_clauses: list[AnalyzedClause] = field(default_factory=list)
    summary: ClauseSummary = field(default_factory=ClauseSummary)
    full_analysis: bool = False

    def to_dict(self) -> dict:
        return {
            "clauses": [c.to_dict() for c in self.clauses],
            "high_risk_clauses": [c.to_dict() for c in self.high_risk_clauses],
            "summary": self.summary.to_dict(),
            "full_analysis": self.full_analysis,
        }


def create_empty_result(chunks_count: int) -> ContractAnalysisResult:
    """Result used when analysis cannot be performed."""
    return ContractAnalysisResult(summary=ClauseSummary(chunks_analyzed=chunks_count))


def sort_clauses(clauses: list[AnalyzedClause]) -> list[AnalyzedClause]:
    """Order by risk (high, medium, low) then descending IQL score."""
    return sorted(
        clauses,
        key=lambda c: (RISK_ORDER.get(c.risk_level, RISK_ORDER["medium"]), -c.iql_score),
    )


class ClauseAnalyzer:
    """
    IQL clause detection plus parallel enrichment.

    Args:
        scanner: ClauseScanner bound to a classifier
        classifier: Zero-shot classifier for risk and mutuality
        reader: Extractive reader for clause quotes
        max_workers: Concurrent enrichment calls
        task_timeout: Seconds allowed per enrichment call
        defaults: Values used when enrichment fails
    """

    def __init__(
        self,
        scanner: ClauseScanner,
        classifier: BaseClassifier,
        reader: BaseReader,
        max_workers: int = 5,
        task_timeout: Optional[float] = 45.0,
        defaults: Optional[EnrichmentDefaults] = None,
    ):
        self.scanner = scanner
        self.classifier = classifier
        self.reader = reader
        self.max_workers = max_workers
        self.task_timeout = task_timeout
        self.defaults = defaults or EnrichmentDefaults()

    # -------------------------------------------------------------------------
    # Single-clause classification
    # -------------------------------------------------------------------------

    def classify_clause_risk(self, text: str) -> tuple[str, float]:
        """Risk level and confidence for a clause text (defaults on failure)."""
        if len(text) < MIN_CLASSIFIABLE_LENGTH:
            return self.defaults.risk_level, self.defaults.risk_confidence

        try:
            scores = self.classifier.classify(text, RISK_LABELS)
        except Exception as e:
            logger.warning(f"Clause risk classification failed: {e}")
            return self.defaults.risk_level, self.defaults.risk_confidence

        if not scores:
            return self.defaults.risk_level, self.defaults.risk_confidence

        best = scores[0]
        level = RISK_LABEL_TO_LEVEL.get(best.label)
        if level is None:
            level = "low" if "low" in best.label else "high" if "high" in best.label else "medium"
        return level, best.score

    def classify_clause_mutuality(self, text: str) -> tuple[bool, float]:
        """Whether a clause is mutual, with confidence (defaults on failure)."""
        default = (self.defaults.mutual, self.defaults.risk_confidence)
        if len(text) < MIN_CLASSIFIABLE_LENGTH:
            return default

        try:
            scores = self.classifier.classify(text, MUTUALITY_LABELS)
        except Exception as e:
            logger.warning(f"Clause mutuality classification failed: {e}")
            return default

        by_label = {s.label: s.score for s in scores}
        mutual = by_label.get("mutual_obligation")
        unilateral = by_label.get("unilateral_obligation")
        if mutual is None or unilateral is None:
            return default
        return mutual > unilateral, max(mutual, unilateral)

    def extract_clause_quote(self, text: str, clause_type: str) -> Optional[ExtractedAnswer]:
        """Verbatim text of the clause within its chunk, or None."""
        question = CLAUSE_QUOTE_QUESTION.format(clause=clause_type.replace("_", " "))
        try:
            answers = self.reader.extract(question, text)
        except Exception as e:
            logger.warning(f"Clause quote extraction failed for {clause_type}: {e}")
            return None

        for answer in answers:
            span = align_quote(text, answer.text, answer.start, answer.end)
            if span is not None:
                return ExtractedAnswer(
                    text=text[span[0]:span[1]],
                    score=answer.score,
                    start=span[0],
                    end=span[1],
                    verified=answer.verified,
                )
        return None

    # -------------------------------------------------------------------------
    # Enrichment
    # -------------------------------------------------------------------------

    def _new_clause(self, match: ClauseMatch) -> AnalyzedClause:
        return AnalyzedClause(
            type=match.clause_type,
            type_label=clause_label(match.clause_type),
            iql_score=match.score,
            risk_level=self.defaults.risk_level,
            risk_confidence=self.defaults.risk_confidence,
            is_mutual=self.defaults.mutual,
            chunk_text=match.text,
            chunk_index=match.text_index,
        )

    def _enrich(
        self,
        matches: list[ClauseMatch],
        extract_quotes: bool,
        classify_risk: bool,
        cancel_event: Optional[threading.Event] = None,
    ) -> list[AnalyzedClause]:
        """Run quote, risk and mutuality calls for all matches on one bounded pool."""
        clauses = [self._new_clause(m) for m in matches]

        tasks = []
        for i, match in enumerate(matches):
            if extract_quotes:
                tasks.append((i, "quote"))
            if classify_risk:
                tasks.append((i, "risk"))
                tasks.append((i, "mutuality"))

        def run(task):
            i, kind = task
            clause = clauses[i]
            if kind == "quote":
                return self.extract_clause_quote(clause.chunk_text, clause.type)
            if kind == "risk":
                return self.classify_clause_risk(clause.chunk_text)
            return self.classify_clause_mutuality(clause.chunk_text)

        outcomes = run_bounded(
            run,
            tasks,
            max_workers=self.max_workers,
            task_timeout=self.task_timeout,
            cancel_event=cancel_event,
            label="clause-enrichment",
        )

        for (i, kind), outcome in zip(tasks, outcomes):
            if outcome is None:
                continue
            clause = clauses[i]
            if kind == "quote":
                clause.exact_quote = outcome.text
                clause.quote_confidence = outcome.score
                clause.quote_start = outcome.start
                clause.quote_end = outcome.end
            elif kind == "risk":
                clause.risk_level, clause.risk_confidence = outcome
            else:
                clause.is_mutual = outcome[0]

        return clauses

    # -------------------------------------------------------------------------
    # Analyses
    # -------------------------------------------------------------------------

    def analyze_contract_clauses(
        self,
        chunks: list[str],
        threshold: float = 0.6,
        extract_quotes: bool = True,
        classify_risk: bool = True,
        max_clauses: int = 20,
        cancel_event: Optional[threading.Event] = None,
    ) -> ContractAnalysisResult:
        """
        Scan contract chunks for high-risk and core clauses and enrich them.

        Args:
            chunks: Document chunk texts
            threshold: Minimum IQL score
            extract_quotes: Pull exact clause text
            classify_risk: Classify risk and mutuality
            max_clauses: Maximum detections to enrich
            cancel_event: Stops pending enrichment calls when set

        Returns:
            ContractAnalysisResult (full_analysis=False if scanning was impossible)
        """
        if not chunks:
            return create_empty_result(0)

        try:
            matches = self.scanner.scan_contract_clauses(chunks, threshold)
        except ServiceUnavailableError as e:
            logger.info(f"Clause analysis skipped: {e}")
            return create_empty_result(len(chunks))
        except Exception as e:
            logger.error(f"Contract analysis error: {e}")
            return create_empty_result(len(chunks))

        clauses = sort_clauses(self._enrich(
            matches[:max_clauses], extract_quotes, classify_risk, cancel_event,
        ))

        high = [c for c in clauses if c.risk_level == "high"]
        summary = ClauseSummary(
            total_clauses=len(clauses),
            high_risk_count=len(high),
            medium_risk_count=sum(1 for c in clauses if c.risk_level == "medium"),
            low_risk_count=sum(1 for c in clauses if c.risk_level == "low"),
            chunks_analyzed=len(chunks),
        )
        logger.info(
            f"Contract analysis: {summary.total_clauses} clauses "
            f"({summary.high_risk_count} high risk) over {len(chunks)} chunks"
        )
        return ContractAnalysisResult(
            clauses=clauses,
            high_risk_clauses=high,
            summary=summary,
            full_analysis=True,
        )

    def scan_for_high_risk_clauses(
        self,
        chunks: list[str],
        threshold: float = 0.7,
        cancel_event: Optional[threading.Event] = None,
    ) -> list[AnalyzedClause]:
        """Quick scan with high-risk templates only; every hit is marked high risk."""
        if not chunks:
            return []
        try:
            matches = self.scanner.scan_high_risk_clauses(chunks, threshold)
        except Exception as e:
            logger.error(f"High risk scan error: {e}")
            return []

        clauses = self._enrich(matches, extract_quotes=True, classify_risk=False, cancel_event=cancel_event)
        for clause in clauses:
            clause.risk_level = "high"
        return clauses

    def analyze_due_diligence_clauses(
        self,
        chunks: list[str],
        threshold: float = 0.6,
        cancel_event: Optional[threading.Event] = None,
    ) -> list[AnalyzedClause]:
        """Due diligence templates, enriched, sorted by descending IQL score."""
        if not chunks:
            return []
        try:
            matches = self.scanner.scan_due_diligence_clauses(chunks, threshold)
        except Exception as e:
            logger.error(f"Due diligence scan error: {e}")
            return []

        clauses = self._enrich(matches, extract_quotes=True, classify_risk=True, cancel_event=cancel_event)
        return sorted(clauses, key=lambda c: c.iql_score, reverse=True)

    def find_party_obligations(
        self,
        chunks: list[str],
        party: str,
        clause_type: Optional[str] = None,
        threshold: float = 0.5,
    ) -> list[ClauseMatch]:
        """
        Chunks that obligate a party, optionally restricted to a clause type.

        E.g. indemnity clauses that obligate "the Customer".
        """
        if not chunks:
            return []

        expr = parse_iql(obligating(party))
        if clause_type and clause_type in IQL_TEMPLATES:
            expr = And(parse_iql(IQL_TEMPLATES[clause_type]), expr)
        query = expr.to_iql()

        try:
            scores = self.scanner.execute(expr, chunks)
        except Exception as e:
            logger.error(f"Party obligation search error: {e}")
            return []

        return [
            ClauseMatch(
                clause_type=clause_type or "party_obligation",
                query=query,
                score=score,
                text=chunks[i],
                text_index=i,
            )
            for i, score in enumerate(scores)
            if score >= threshold
        ]


# =============================================================================
# Context Builders
# =============================================================================

def build_clause_analysis_context(analysis: ContractAnalysisResult) -> str:
    """Structured clause analysis block for the language model prompt."""
    if not analysis.clauses:
        return ""

    s = analysis.summary
    sections = [
        f"{CONTEXT_HEADINGS['clause_analysis']}\n\n"
        f"Analyzed {s.chunks_analyzed} document sections.\n"
        f"Found {s.total_clauses} notable clauses:\n"
        f"- High Risk: {s.high_risk_count}\n"
        f"- Medium Risk: {s.medium_risk_count}\n"
        f"- Low Risk: {s.low_risk_count}"
    ]

    if analysis.high_risk_clauses:
        entries = []
        for i, c in enumerate(analysis.high_risk_clauses, 1):
            quote = f'> "{c.exact_quote}"' if c.exact_quote else f"> {c.chunk_text[:200]}..."
            entries.append(
                f"**{i}. {c.type_label}** (Score: {round(c.iql_score * 100)}%)\n"
                f"{'Mutual' if c.is_mutual else 'Unilateral'} obligation\n"
                f"{quote}"
            )
        sections.append(f"{CONTEXT_HEADINGS['high_risk']}\n\n" + "\n\n".join(entries))

    others = [c for c in analysis.clauses if c.risk_level != "high"]
    if others:
        lines = [
            f"- **{c.type_label}** ({c.risk_level} risk, {round(c.iql_score * 100)}% match)"
            for c in others[:10]
        ]
        sections.append(f"{CONTEXT_HEADINGS['other_clauses']}\n\n" + "\n".join(lines))

    return "\n\n".join(sections)


def build_clause_summary(analysis: ContractAnalysisResult) -> dict:
    """Short summary for quick display."""
    s = analysis.summary
    clause_types = []
    for c in analysis.clauses:
        if c.type_label not in clause_types:
            clause_types.append(c.type_label)
    return {
        "has_high_risk": bool(analysis.high_risk_clauses),
        "risk_summary": f"{s.high_risk_count} high, {s.medium_risk_count} medium, {s.low_risk_count} low risk",
        "clause_types": clause_types,
    }
