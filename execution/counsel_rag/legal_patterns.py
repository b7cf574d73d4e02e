"""
Legal Pattern Definitions for Counsel RAG

Regex patterns, classifier label sets, clause-type labels and context
headings shared by the chunker, the clause analyzer and the context
assembler. Modules import from here instead of defining patterns inline.
"""

import re

# =============================================================================
# Section Detection Patterns (chunk boundaries and headers)
# =============================================================================

# Keywords that open a legal section
SECTION_KEYWORDS = ("ARTICLE", "SECTION", "SCHEDULE", "PART", "EXHIBIT")

# Separator candidates for the recursive splitter (highest priority first)
SECTION_SEPARATOR_PATTERN = re.compile(
    r"\n(?=\d+\.\s|[A-Z]{2,}|#{1,3}\s|ARTICLE|SECTION|SCHEDULE|PART)"
)

# Header detectors, tried in order on the first lines of a chunk
HEADER_PATTERNS = {
    "numbered": re.compile(r"^(\d+(?:\.\d+)*\.?\s+[A-Z].{0,50})"),
    "all_caps": re.compile(r"^(?=.*[A-Z]{2})[A-Z0-9][A-Z0-9 .,:;'&()/-]{2,57}[A-Z0-9.:)]$"),
    "markdown": re.compile(r"^#{1,3}\s+(.+)"),
    "keyword": re.compile(
        r"^(?i:ARTICLE|SECTION|SCHEDULE|PART|EXHIBIT)\s+(?:\d+(?:\.\d+)*|[IVXLC]+|[A-Z])\b.*"
    ),
}

# Numbered headings longer than this are treated as body text
MAX_HEADER_LINE_LENGTH = 100

# Sentence boundary used for first-sentence fallbacks
SENTENCE_END_PATTERN = re.compile(r"[.!?]\s")

# =============================================================================
# Risk and Mutuality Classification Labels
# =============================================================================

RISK_LABELS = [
    "low_risk_standard_clause",
    "medium_risk_notable_obligation",
    "high_risk_unusual_or_onerous",
]

RISK_LABEL_TO_LEVEL = {
    "low_risk_standard_clause": "low",
    "medium_risk_notable_obligation": "medium",
    "high_risk_unusual_or_onerous": "high",
}

RISK_ORDER = {"high": 0, "medium": 1, "low": 2}

MUTUALITY_LABELS = ["mutual_obligation", "unilateral_obligation"]

# Document type labels for whole-document classification
DOCUMENT_TYPE_LABELS = [
    "contract",
    "court_judgment",
    "legislation",
    "regulatory_guidance",
    "correspondence",
    "legal_memorandum",
]

# Documents are typed from a leading sample; short texts get the fallback type
DOCUMENT_TYPE_SAMPLE_CHARS = 2000
MIN_DOCUMENT_TYPE_LENGTH = 50
DEFAULT_DOCUMENT_TYPE = "other"
DEFAULT_DOCUMENT_TYPE_CONFIDENCE = 0.3

# Texts shorter than this skip classification and receive default values
MIN_CLASSIFIABLE_LENGTH = 20

# =============================================================================
# Clause Type Labels (UI and context output)
# =============================================================================

CLAUSE_TYPE_LABELS = {
    "confidentiality": "Confidentiality",
    "indemnity": "Indemnity",
    "termination": "Termination",
    "limitation": "Limitation of Liability",
    "assignment": "Assignment",
    "change_of_control": "Change of Control",
    "intellectual_property": "Intellectual Property",
    "warranty": "Warranty",
    "force_majeure": "Force Majeure",
    "governing_law": "Governing Law",
    "dispute_resolution": "Dispute Resolution",
    "notice": "Notice",
    "severability": "Severability",
    "entire_agreement": "Entire Agreement",
    "amendment": "Amendment",
    "non_compete": "Non-Compete",
    "exclusivity": "Exclusivity",
    "unlimited_liability": "Unlimited Liability",
    "broad_indemnity": "Broad Indemnification",
    "unilateral_termination": "Unilateral Termination",
    "automatic_renewal": "Automatic Renewal",
    "party_obligation": "Party Obligation",
}


def clause_label(clause_type: str) -> str:
    """Human-readable label for a clause type (falls back to the raw type)."""
    return CLAUSE_TYPE_LABELS.get(clause_type, clause_type.replace("_", " ").title())


# Question asked of the extractive reader to pull a clause's verbatim text
CLAUSE_QUOTE_QUESTION = "What is the exact text of the {clause} provision?"

# =============================================================================
# Context Assembly Headings
# =============================================================================

CONTEXT_HEADINGS = {
    "citations": "## Verified Citations",
    "citation_intro": "The following exact quotes were extracted from the source documents:",
    "clause_analysis": "## Contract Clause Analysis",
    "high_risk": "### High Risk Clauses (Require Attention)",
    "other_clauses": "### Other Notable Clauses",
    "documents": "## Source Documents",
}

DOCUMENT_SEPARATOR = "\n\n---\n\n"
