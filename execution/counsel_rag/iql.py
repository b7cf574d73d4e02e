"""
Isaacus Query Language (IQL) Engine

IQL combines natural-language statements with Boolean operators, e.g.

    {IS termination clause} AND NOT {IS mutual clause}

Queries are parsed into an expression tree and evaluated locally:
- each distinct statement is scored once per batch of texts by the classifier
- AND takes the minimum, OR the maximum, NOT the complement (1 - x)

This module provides the expression types, a parser, a fluent builder,
the evaluator, pre-built clause templates and the ClauseScanner that runs
templates over document chunks.
"""

import re
import time
import logging
from typing import Optional, Union
from dataclasses import dataclass

from .classifier import BaseClassifier
from .config import ServiceUnavailableError

logger = logging.getLogger(__name__)


class IQLSyntaxError(ValueError):
    """Raised for malformed IQL queries."""


# =============================================================================
# Expression Tree
# =============================================================================

@dataclass(frozen=True)
class Statement:
    """Leaf: a natural-language statement scored by the classifier."""
    text: str

    def to_iql(self) -> str:
        return f"{{IS {self.text}}}"


@dataclass(frozen=True)
class And:
    left: "Expression"
    right: "Expression"

    def to_iql(self) -> str:
        return f"{_wrap(self.left, Or)} AND {_wrap(self.right, Or)}"


@dataclass(frozen=True)
class Or:
    left: "Expression"
    right: "Expression"

    def to_iql(self) -> str:
        return f"{self.left.to_iql()} OR {self.right.to_iql()}"


@dataclass(frozen=True)
class Not:
    operand: "Expression"

    def to_iql(self) -> str:
        return f"NOT {_wrap(self.operand, (And, Or))}"


Expression = Union[Statement, And, Or, Not]


def _wrap(expr: Expression, types) -> str:
    text = expr.to_iql()
    return f"({text})" if isinstance(expr, types) else text


def statements(expr: Expression) -> list[str]:
    """Distinct statement texts in left-to-right order."""
    seen: list[str] = []

    def walk(node: Expression) -> None:
        if isinstance(node, Statement):
            if node.text not in seen:
                seen.append(node.text)
        elif isinstance(node, Not):
            walk(node.operand)
        else:
            walk(node.left)
            walk(node.right)

    walk(expr)
    return seen


def fold(expr: Expression, scores: dict[str, float]) -> float:
    """Combine statement scores through the Boolean operators."""
    if isinstance(expr, Statement):
        return scores[expr.text]
    if isinstance(expr, And):
        return min(fold(expr.left, scores), fold(expr.right, scores))
    if isinstance(expr, Or):
        return max(fold(expr.left, scores), fold(expr.right, scores))
    if isinstance(expr, Not):
        return 1.0 - fold(expr.operand, scores)
    raise TypeError(f"Not an IQL expression: {expr!r}")


# =============================================================================
# Parser
# =============================================================================

_TOKEN_RE = re.compile(r"\s*(?:(\{[^{}]*\})|(AND|OR|NOT)\b|(\()|(\))|(\S))")


def _tokenize(query: str) -> list[tuple[str, str]]:
    tokens = []
    pos = 0
    query = query.strip()
    while pos < len(query):
        match = _TOKEN_RE.match(query, pos)
        if not match or match.end() == pos:
            break
        statement, op, lparen, rparen, junk = match.groups()
        if statement:
            body = statement[1:-1].strip()
            if not body.upper().startswith("IS "):
                raise IQLSyntaxError(f"Statement must start with IS: {statement}")
            text = body[3:].strip()
            if not text:
                raise IQLSyntaxError(f"Empty statement: {statement}")
            tokens.append(("STATEMENT", text))
        elif op:
            tokens.append((op, op))
        elif lparen:
            tokens.append(("(", "("))
        elif rparen:
            tokens.append((")", ")"))
        else:
            raise IQLSyntaxError(f"Unexpected character {junk!r} at position {match.start(5)}")
        pos = match.end()
    return tokens


class _Parser:
    """Recursive descent: OR < AND < NOT < primary."""

    def __init__(self, tokens: list[tuple[str, str]]):
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> Optional[str]:
        return self.tokens[self.pos][0] if self.pos < len(self.tokens) else None

    def take(self, kind: str) -> str:
        if self.peek() != kind:
            found = self.peek() or "end of query"
            raise IQLSyntaxError(f"Expected {kind}, found {found}")
        value = self.tokens[self.pos][1]
        self.pos += 1
        return value

    def parse(self) -> Expression:
        expr = self.or_expr()
        if self.peek() is not None:
            raise IQLSyntaxError(f"Unexpected {self.peek()} after complete expression")
        return expr

    def or_expr(self) -> Expression:
        expr = self.and_expr()
        while self.peek() == "OR":
            self.take("OR")
            expr = Or(expr, self.and_expr())
        return expr

    def and_expr(self) -> Expression:
        expr = self.not_expr()
        while self.peek() == "AND":
            self.take("AND")
            expr = And(expr, self.not_expr())
        return expr

    def not_expr(self) -> Expression:
        if self.peek() == "NOT":
            self.take("NOT")
            return Not(self.not_expr())
        return self.primary()

    def primary(self) -> Expression:
        if self.peek() == "STATEMENT":
            return Statement(self.take("STATEMENT"))
        if self.peek() == "(":
            self.take("(")
            expr = self.or_expr()
            self.take(")")
            return expr
        found = self.peek() or "end of query"
        raise IQLSyntaxError(f"Expected a statement or '(', found {found}")


def parse_iql(query: str) -> Expression:
    """
    Parse an IQL query string into an expression tree.

    Raises:
        IQLSyntaxError: if the query is empty or malformed
    """
    if not query or not query.strip():
        raise IQLSyntaxError("Empty IQL query")
    return _Parser(_tokenize(query)).parse()


# =============================================================================
# Templates
# =============================================================================

IQL_TEMPLATES = {
    # Core clause types
    "confidentiality": "{IS confidentiality clause}",
    "indemnity": "{IS indemnity clause}",
    "termination": "{IS termination clause}",
    "limitation": "{IS limitation of liability clause}",
    "assignment": "{IS assignment clause}",
    "change_of_control": "{IS change of control clause}",
    "intellectual_property": "{IS intellectual property clause}",
    "warranty": "{IS warranty clause}",
    "representation": "{IS representation clause}",
    "covenant": "{IS covenant clause}",
    "force_majeure": "{IS force majeure clause}",
    "governing_law": "{IS governing law clause}",
    "dispute_resolution": "{IS dispute resolution clause}",
    "notice": "{IS notice clause}",
    "severability": "{IS severability clause}",
    "entire_agreement": "{IS entire agreement clause}",
    "amendment": "{IS amendment clause}",
    "waiver": "{IS waiver clause}",
    "counterparts": "{IS counterparts clause}",
    "survival": "{IS survival clause}",

    # Relationship types
    "mutual": "{IS mutual clause}",
    "unilateral": "{IS unilateral clause}",

    # Risk indicators
    "unlimited_liability": '{IS clause that "creates unlimited liability"}',
    "broad_indemnity": '{IS clause that "requires broad indemnification"}',
    "unilateral_termination": '{IS clause that "allows unilateral termination"}',
    "automatic_renewal": '{IS clause that "provides for automatic renewal"}',
    "non_compete": "{IS non-compete clause}",
    "exclusivity": "{IS exclusivity clause}",
}

TEMPLATE_GROUPS = {
    # Clauses that need careful review
    "high_risk": [
        "indemnity",
        "limitation",
        "unlimited_liability",
        "broad_indemnity",
        "unilateral_termination",
    ],
    "core": [
        "termination",
        "confidentiality",
        "assignment",
        "change_of_control",
        "intellectual_property",
    ],
    "boilerplate": [
        "governing_law",
        "dispute_resolution",
        "notice",
        "severability",
        "entire_agreement",
        "amendment",
    ],
    # M&A / due diligence
    "due_diligence": [
        "change_of_control",
        "assignment",
        "non_compete",
        "exclusivity",
        "termination",
    ],
}


def _quote(value: str) -> str:
    return value.replace('"', "'").replace("{", "(").replace("}", ")").strip()


def obligating(party: str) -> str:
    """Template: clause obligating a party."""
    return f'{{IS clause obligating "{_quote(party)}"}}'


def entitling(party: str) -> str:
    """Template: clause entitling a party."""
    return f'{{IS clause entitling "{_quote(party)}"}}'


def binding(party: str) -> str:
    """Template: clause binding a party."""
    return f'{{IS clause binding "{_quote(party)}"}}'


def custom_clause(description: str) -> str:
    """Template: clause matching a free-text description."""
    return f'{{IS clause that "{_quote(description)}"}}'


# =============================================================================
# Builder
# =============================================================================

class IQLBuilder:
    """
    Stack-based builder for IQL expressions.

    Example:
        iql().is_("indemnity clause").obligating("Customer").and_().build()
    """

    def __init__(self):
        self._stack: list[Expression] = []

    def add(self, query: Union[str, Expression]) -> "IQLBuilder":
        """Push a raw IQL string or an expression."""
        self._stack.append(parse_iql(query) if isinstance(query, str) else query)
        return self

    def is_(self, clause_type: str) -> "IQLBuilder":
        self._stack.append(Statement(clause_type))
        return self

    def clause_that(self, description: str) -> "IQLBuilder":
        self._stack.append(Statement(f'clause that "{_quote(description)}"'))
        return self

    def obligating(self, party: str) -> "IQLBuilder":
        self._stack.append(Statement(f'clause obligating "{_quote(party)}"'))
        return self

    def entitling(self, party: str) -> "IQLBuilder":
        self._stack.append(Statement(f'clause entitling "{_quote(party)}"'))
        return self

    def and_(self) -> "IQLBuilder":
        """Combine the top two expressions with AND (minimum score)."""
        if len(self._stack) >= 2:
            right = self._stack.pop()
            left = self._stack.pop()
            self._stack.append(And(left, right))
        return self

    def or_(self) -> "IQLBuilder":
        """Combine the top two expressions with OR (maximum score)."""
        if len(self._stack) >= 2:
            right = self._stack.pop()
            left = self._stack.pop()
            self._stack.append(Or(left, right))
        return self

    def not_(self) -> "IQLBuilder":
        """Negate the top expression (complement score)."""
        if self._stack:
            self._stack.append(Not(self._stack.pop()))
        return self

    def build(self) -> Expression:
        if not self._stack:
            raise IQLSyntaxError("No statements added to IQL query")
        if len(self._stack) > 1:
            raise IQLSyntaxError(
                f"{len(self._stack)} expressions left on the stack; combine them with and_() or or_()"
            )
        return self._stack[0]

    def build_query(self) -> str:
        return self.build().to_iql()

    def reset(self) -> "IQLBuilder":
        self._stack = []
        return self


def iql() -> IQLBuilder:
    """Create a new IQL query builder."""
    return IQLBuilder()


# =============================================================================
# Evaluation
# =============================================================================

class IQLEvaluator:
    """Evaluate expressions over a batch of texts with one classifier call per statement."""

    def __init__(self, classifier: BaseClassifier):
        self.classifier = classifier

    def evaluate(self, query: Union[str, Expression], texts: list[str]) -> list[float]:
        """
        Score every text against a query.

        Args:
            query: IQL string or expression
            texts: Texts to score

        Returns:
            One score in [0, 1] per text
        """
        expr = parse_iql(query) if isinstance(query, str) else query
        if not texts:
            return []

        leaf_scores = {
            text: self.classifier.score_statement(text, texts)
            for text in statements(expr)
        }
        return [
            fold(expr, {leaf: scores[i] for leaf, scores in leaf_scores.items()})
            for i in range(len(texts))
        ]


@dataclass
class ClauseMatch:
    """A text that satisfied a clause template above threshold."""
    clause_type: str
    query: str
    score: float
    text: str
    text_index: int

    def to_dict(self) -> dict:
        return {
            "clause_type": self.clause_type,
            "query": self.query,
            "score": self.score,
            "text": self.text,
            "text_index": self.text_index,
        }


TemplateSpec = Union[str, list, dict]


def resolve_templates(templates: TemplateSpec) -> list[tuple[str, str]]:
    """
    Normalize a template selection into (name, query) pairs.

    Accepts a template name, a group name, a raw IQL query, a list of
    names and/or (name, query) pairs, or a {name: query} dict.
    """
    if isinstance(templates, dict):
        return list(templates.items())
    if isinstance(templates, str):
        if templates in TEMPLATE_GROUPS:
            return [(name, IQL_TEMPLATES[name]) for name in TEMPLATE_GROUPS[templates]]
        if templates in IQL_TEMPLATES:
            return [(templates, IQL_TEMPLATES[templates])]
        return [("custom", templates)]

    resolved = []
    for item in templates:
        if isinstance(item, tuple):
            resolved.append(item)
        elif item in IQL_TEMPLATES:
            resolved.append((item, IQL_TEMPLATES[item]))
        else:
            raise KeyError(f"Unknown IQL template: {item}")
    return resolved


class ClauseScanner:
    """
    Run IQL templates over document chunks.

    A template that fails to evaluate is logged and skipped; an
    unavailable classifier stops the scan with ServiceUnavailableError.
    """

    def __init__(self, classifier: BaseClassifier):
        self.evaluator = IQLEvaluator(classifier)

    def execute(self, query: Union[str, Expression], texts: list[str]) -> list[float]:
        """Scores for one query over texts."""
        return self.evaluator.evaluate(query, texts)

    def scan(
        self,
        texts: list[str],
        templates: TemplateSpec,
        threshold: float = 0.5,
    ) -> list[ClauseMatch]:
        """
        Scan texts with one or more templates.

        Args:
            texts: Document chunks
            templates: See resolve_templates()
            threshold: Minimum score to report

        Returns:
            Matches with score >= threshold, sorted by descending score
        """
        if not texts:
            return []

        t0 = time.time()
        matches: list[ClauseMatch] = []
        for name, query in resolve_templates(templates):
            try:
                scores = self.evaluator.evaluate(query, texts)
            except ServiceUnavailableError:
                raise
            except Exception as e:
                logger.error(f"IQL scan failed for {name}: {e}")
                continue

            for index, score in enumerate(scores):
                if score >= threshold:
                    matches.append(ClauseMatch(
                        clause_type=name,
                        query=query,
                        score=score,
                        text=texts[index],
                        text_index=index,
                    ))

        matches.sort(key=lambda m: m.score, reverse=True)
        logger.info(
            f"IQL scan: {len(matches)} matches over {len(texts)} texts "
            f"in {(time.time() - t0) * 1000:.0f}ms"
        )
        return matches

    def scan_high_risk_clauses(self, texts: list[str], threshold: float = 0.7) -> list[ClauseMatch]:
        return self.scan(texts, "high_risk", threshold)

    def scan_contract_clauses(self, texts: list[str], threshold: float = 0.6) -> list[ClauseMatch]:
        """High-risk and core clause templates together."""
        names = TEMPLATE_GROUPS["high_risk"] + TEMPLATE_GROUPS["core"]
        return self.scan(texts, names, threshold)

    def scan_due_diligence_clauses(self, texts: list[str], threshold: float = 0.6) -> list[ClauseMatch]:
        return self.scan(texts, "due_diligence", threshold)

    def has_clause(self, texts: list[str], clause_type: str, threshold: float = 0.7) -> bool:
        """Whether any text contains the given template clause."""
        if clause_type not in IQL_TEMPLATES:
            raise KeyError(f"Unknown IQL template: {clause_type}")
        return any(score >= threshold for score in self.execute(IQL_TEMPLATES[clause_type], texts))

    def find_best_match(
        self,
        texts: list[str],
        query: Union[str, Expression],
        threshold: float = 0.5,
    ) -> Optional[ClauseMatch]:
        """Highest-scoring text for a query, or None if nothing reaches threshold."""
        expr = parse_iql(query) if isinstance(query, str) else query
        scores = self.execute(expr, texts)
        if not scores:
            return None
        best = max(range(len(scores)), key=lambda i: scores[i])
        if scores[best] < threshold:
            return None
        return ClauseMatch(
            clause_type="custom",
            query=expr.to_iql(),
            score=scores[best],
            text=texts[best],
            text_index=best,
        )
