"""
Pattern Definitions for Legal Lens

All regex patterns, risk tables, terminology hints and prompt templates,
organized by document type. Modules import from here instead of defining
patterns inline.
"""

import re
from dataclasses import dataclass

from .models import DocumentType, RiskLevel

# =============================================================================
# Clause Boundary Markers (highest priority first)
# =============================================================================

CLAUSE_MARKERS = {
    "heading": [
        r"^[ \t]*(?:#{1,6}[ \t]+)?(?:ARTICLE|Article|SECTION|Section|CLAUSE|Clause|PART|Part|SCHEDULE|Schedule)[ \t]+[IVXLCDM\d]+(?:\.\d+)*\b",
        r"^[ \t]*#{1,6}[ \t]+\S",
    ],
    "numbered": [
        r"^[ \t]*\d{1,3}(?:\.\d{1,3})*[.)][ \t]+\S",
        r"^[ \t]*[IVXLC]{1,6}\.[ \t]+\S",
    ],
    "lettered": [
        r"^[ \t]*\([a-z]\)[ \t]+\S",
        r"^[ \t]*[a-z]\)[ \t]+\S",
        r"^[ \t]*\((?:i|ii|iii|iv|v|vi|vii|viii|ix|x|xi|xii)\)[ \t]+\S",
    ],
}

MARKER_PRIORITY = ["heading", "numbered", "lettered"]

# Sentence boundary: terminal punctuation, whitespace, then an upper-case start
SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+(?=[\"'(\[]?[A-Z])")

# Abbreviations that end with a period but do not end a sentence
ABBREVIATIONS = frozenset({
    "mr", "mrs", "ms", "dr", "no", "art", "sec", "inc", "ltd", "co", "corp",
    "st", "vs", "etc", "e.g", "i.e", "para", "cl", "p", "pp", "jan", "feb",
    "mar", "apr", "jun", "jul", "aug", "sep", "sept", "oct", "nov", "dec",
})

# =============================================================================
# Document Type Detection
# =============================================================================

DOCTYPE_PATTERNS = {
    DocumentType.RENTAL: [
        r"(?i)\btenants?\b|\blandlords?\b",
        r"(?i)\blease\b|\blessee\b|\blessor\b",
        r"(?i)\brent(?:al)?\b",
        r"(?i)\bpremises\b|\bsecurity deposit\b",
    ],
    DocumentType.EMPLOYMENT: [
        r"(?i)\bemployee\b|\bemployer\b",
        r"(?i)\bemployment\b|\bprobation(?:ary)?\b",
        r"(?i)\bsalary\b|\bwages?\b|\bremuneration\b",
        r"(?i)\bjob title\b|\bworking hours\b|\bnotice period\b",
    ],
    DocumentType.LOAN: [
        r"(?i)\bborrowers?\b|\blenders?\b",
        r"(?i)\bloan\b|\bprincipal amount\b",
        r"(?i)\binterest rate\b|\bper annum\b",
        r"(?i)\brepayment\b|\binstal(?:l)?ments?\b|\bEMI\b",
    ],
    DocumentType.GOVERNMENT: [
        r"(?i)\bgovernment\b|\bministry\b|\bdepartment of\b",
        r"(?i)\bhereby notified\b|\bnotification\b|\bgazette\b",
        r"(?i)\bregulations?\b|\bact,? \d{4}\b|\bstatutory\b",
        r"(?i)\bapplicants?\b|\bcitizens?\b|\bpublic authority\b",
    ],
}

# =============================================================================
# Clause Type Keywords
# =============================================================================

CLAUSE_TYPE_KEYWORDS = {
    "payment": ["pay", "payment", "rent", "fee", "salary", "wage", "instalment", "installment", "invoice"],
    "termination": ["terminate", "termination", "cancel", "expiry", "expire", "notice period"],
    "liability": ["liable", "liability", "indemnify", "indemnity", "damages", "waive"],
    "confidentiality": ["confidential", "non-disclosure", "disclose", "secret"],
    "deposit": ["deposit", "collateral", "security interest", "guarantee"],
    "interest": ["interest", "apr", "per annum", "rate"],
    "maintenance": ["repair", "maintenance", "maintain", "damage to the premises"],
    "dispute_resolution": ["arbitration", "dispute", "court", "jurisdiction", "governing law"],
    "compliance": ["comply", "compliance", "regulation", "statute", "penalty", "fine"],
    "definitions": ["means", "shall mean", "definition", "defined"],
}

# =============================================================================
# Risk Patterns
# =============================================================================


@dataclass(frozen=True)
class RiskPattern:
    """A deterministic risk rule: regex mapped to risk type and base severity."""
    risk_type: str
    regex: str
    severity: RiskLevel
    description: str
    recommendation: str
    borderline: bool = False

    @property
    def compiled(self) -> re.Pattern:
        return _compile(self.regex)


_PATTERN_CACHE: dict[str, re.Pattern] = {}


def _compile(regex: str) -> re.Pattern:
    pattern = _PATTERN_CACHE.get(regex)
    if pattern is None:
        pattern = re.compile(regex, re.IGNORECASE)
        _PATTERN_CACHE[regex] = pattern
    return pattern


_LATE_FEE = RiskPattern(
    "penalty",
    r"\blate\s+(?:payment\s+)?(?:fees?|charges?)\b",
    RiskLevel.MEDIUM,
    "A late fee applies if payment is not made on time.",
    "Note the due date and the fee amount; ask whether a grace period applies.",
)

COMMON_RISK_PATTERNS = [
    RiskPattern(
        "penalty",
        r"\bpenalt(?:y|ies)\b|\bliquidated damages\b",
        RiskLevel.MEDIUM,
        "The clause imposes a penalty or pre-set damages.",
        "Check that the penalty amount is proportionate and clearly capped.",
        borderline=True,
    ),
    RiskPattern(
        "auto_renewal",
        r"\bautomatic(?:ally)?\s+renew\w*|\brenews?\s+automatically\b",
        RiskLevel.MEDIUM,
        "The agreement renews automatically unless cancelled.",
        "Diarise the cancellation deadline before the renewal date.",
    ),
    RiskPattern(
        "unilateral_change",
        r"\b(?:sole|absolute)\s+discretion\b|\breserves?\s+the\s+right\s+to\s+(?:amend|modify|change|vary)\b",
        RiskLevel.MEDIUM,
        "One party may change terms or decide matters on its own.",
        "Ask for changes to require written agreement from both parties.",
        borderline=True,
    ),
    RiskPattern(
        "waiver",
        r"\bwaives?\b[^.]{0,80}\b(?:rights?|claims?|remed(?:y|ies))\b",
        RiskLevel.HIGH,
        "You give up legal rights or claims under this clause.",
        "Do not sign a waiver of rights without independent legal advice.",
    ),
    RiskPattern(
        "indemnity",
        r"\bindemnif(?:y|ies|ication)\b|\bhold\s+harmless\b",
        RiskLevel.MEDIUM,
        "You may have to cover the other party's losses or legal costs.",
        "Limit the indemnity to losses caused by your own fault and cap it.",
        borderline=True,
    ),
    RiskPattern(
        "termination",
        r"\bterminat\w*\b[^.]{0,60}\b(?:immediately|without\s+(?:prior\s+)?(?:notice|cause|reason))\b",
        RiskLevel.HIGH,
        "The agreement can be ended abruptly without notice or reason.",
        "Negotiate a minimum notice period for termination.",
    ),
    RiskPattern(
        "arbitration",
        r"\b(?:binding|mandatory|compulsory)\s+arbitration\b",
        RiskLevel.MEDIUM,
        "Disputes must go to arbitration instead of court.",
        "Check who chooses the arbitrator and who pays the arbitration costs.",
    ),
]

RISK_PATTERNS = {
    DocumentType.RENTAL: [
        _LATE_FEE,
        RiskPattern(
            "deposit_forfeiture",
            r"\bdeposit\b[^.]{0,80}\b(?:non-?refundable|forfeit\w*|retain\w*)\b",
            RiskLevel.HIGH,
            "The security deposit may be kept by the landlord.",
            "Ask for the conditions for deposit deductions to be itemised.",
        ),
        RiskPattern(
            "eviction",
            r"\bevict\w*\b[^.]{0,60}\bwithout\s+(?:notice|a\s+court\s+order)\b",
            RiskLevel.HIGH,
            "The tenant can be evicted without notice or a court order.",
            "Eviction normally requires notice; seek legal advice before signing.",
        ),
        RiskPattern(
            "privacy",
            r"\b(?:enter|access|inspect)\w*\b[^.]{0,50}\bpremises\b[^.]{0,50}\bwithout\s+(?:prior\s+)?notice\b",
            RiskLevel.MEDIUM,
            "The landlord may enter the premises without notice.",
            "Ask for a minimum notice period before entry except in emergencies.",
        ),
        RiskPattern(
            "rent_increase",
            r"\brent\b[^.]{0,60}\b(?:increase|escalat|revis)\w*",
            RiskLevel.MEDIUM,
            "The rent may be increased during the tenancy.",
            "Check how often and by how much the rent can increase.",
            borderline=True,
        ),
        RiskPattern(
            "maintenance_burden",
            r"\btenant\b[^.]{0,30}\bresponsible\s+for\s+all\s+(?:repairs|maintenance)\b",
            RiskLevel.MEDIUM,
            "All repairs are placed on the tenant, including structural ones.",
            "Limit tenant repairs to minor damage caused by the tenant.",
        ),
    ],
    DocumentType.EMPLOYMENT: [
        RiskPattern(
            "non_compete",
            r"\bnon-?compet\w*\b|\bshall\s+not\b[^.]{0,80}\bcompet\w*\b",
            RiskLevel.HIGH,
            "You may be barred from working for competitors after leaving.",
            "Check the duration and geographic scope of the restriction.",
        ),
        RiskPattern(
            "at_will",
            r"\bat[- ]will\b",
            RiskLevel.MEDIUM,
            "Employment can be ended at any time by either party.",
            "Ask for a notice period or severance terms.",
        ),
        RiskPattern(
            "ip_assignment",
            r"\bassign\w*\b[^.]{0,60}\b(?:intellectual\s+property|inventions?|works?\s+created)\b",
            RiskLevel.MEDIUM,
            "Work you create may belong to the employer, possibly beyond working hours.",
            "Limit the assignment to work created in the course of employment.",
            borderline=True,
        ),
        RiskPattern(
            "unpaid_work",
            r"\bwithout\s+(?:additional\s+|extra\s+)?(?:compensation|overtime\s+pay|remuneration)\b",
            RiskLevel.MEDIUM,
            "Extra work may be required without additional pay.",
            "Check applicable overtime rules and ask for compensation terms.",
        ),
        RiskPattern(
            "salary_deduction",
            r"\bdeduct\w*\b[^.]{0,60}\b(?:salary|wages?|pay)\b",
            RiskLevel.MEDIUM,
            "The employer may deduct amounts from your salary.",
            "Ask for deductions to require your written consent.",
            borderline=True,
        ),
    ],
    DocumentType.LOAN: [
        _LATE_FEE,
        RiskPattern(
            "prepayment_penalty",
            r"\b(?:prepayment|pre-payment|early\s+repayment)\s+(?:penalty|fee|charge)s?\b",
            RiskLevel.MEDIUM,
            "Repaying the loan early costs an extra fee.",
            "Compare the fee with the interest you would save by repaying early.",
        ),
        RiskPattern(
            "variable_rate",
            r"\b(?:variable|floating|adjustable)\s+(?:interest\s+)?rate\b",
            RiskLevel.MEDIUM,
            "The interest rate can change over the life of the loan.",
            "Ask for a cap on rate increases.",
            borderline=True,
        ),
        RiskPattern(
            "acceleration",
            r"\b(?:entire|whole|full)\s+(?:outstanding\s+)?(?:balance|amount|loan)\b[^.]{0,60}\b(?:immediately\s+)?(?:due|payable)\b",
            RiskLevel.HIGH,
            "The full loan can become payable at once after a default.",
            "Check which events count as default and whether a cure period applies.",
        ),
        RiskPattern(
            "collateral",
            r"\bcollateral\b|\bsecurity\s+interest\b|\brepossess\w*\b|\blien\b",
            RiskLevel.MEDIUM,
            "Assets are pledged and may be seized on default.",
            "Make sure the pledged assets are clearly listed and limited.",
            borderline=True,
        ),
    ],
    DocumentType.GOVERNMENT: [
        RiskPattern(
            "penalty",
            r"\b(?:fine|penalt(?:y|ies))\b[^.]{0,40}\b(?:not\s+exceeding|up\s+to|of)\b",
            RiskLevel.MEDIUM,
            "Non-compliance can lead to a fine.",
            "Note the obligation that triggers the fine and its deadline.",
        ),
        RiskPattern(
            "criminal_liability",
            r"\bimprison\w*\b|\bcriminal\s+offen[cs]e\b|\bprosecut\w*\b",
            RiskLevel.HIGH,
            "Non-compliance can be a criminal offence.",
            "Seek legal advice on how to comply.",
        ),
        RiskPattern(
            "deadline",
            r"\bwithin\s+(?:\w+\s+)?(?:\(\d+\)\s+)?days\b",
            RiskLevel.LOW,
            "A deadline applies to an action you must take.",
            "Record the deadline and the date from which it runs.",
            borderline=True,
        ),
        RiskPattern(
            "mandatory_compliance",
            r"\b(?:shall|must)\s+comply\b",
            RiskLevel.LOW,
            "You must comply with a rule or order.",
            "Check exactly which requirements apply to you.",
            borderline=True,
        ),
    ],
    DocumentType.UNKNOWN: [],
}

# Human-readable text for risk types the classifier may surface
RISK_TYPE_INFO = {
    "penalty": (
        "The clause imposes a financial penalty.",
        "Check that the penalty is proportionate and capped.",
    ),
    "termination": (
        "The clause allows the agreement to end on unfavourable terms.",
        "Negotiate a notice period and clear termination grounds.",
    ),
    "liability": (
        "The clause shifts liability or losses onto you.",
        "Ask for liability to be limited and mutual.",
    ),
    "unilateral_change": (
        "One party may change the terms on its own.",
        "Ask for changes to require mutual written agreement.",
    ),
    "hidden_cost": (
        "The clause may create costs that are not obvious.",
        "Ask for all fees and charges to be listed up front.",
    ),
    "rights_waiver": (
        "The clause limits rights you would otherwise have.",
        "Seek legal advice before giving up rights.",
    ),
}

CLASSIFIER_RISK_TYPES = {
    DocumentType.RENTAL: ["penalty", "termination", "liability", "unilateral_change", "hidden_cost", "rights_waiver"],
    DocumentType.EMPLOYMENT: ["penalty", "termination", "liability", "unilateral_change", "rights_waiver"],
    DocumentType.LOAN: ["penalty", "termination", "liability", "unilateral_change", "hidden_cost"],
    DocumentType.GOVERNMENT: ["penalty", "liability", "rights_waiver"],
    DocumentType.UNKNOWN: ["penalty", "termination", "liability", "unilateral_change", "hidden_cost", "rights_waiver"],
}


def risk_patterns_for(document_type: DocumentType) -> list[RiskPattern]:
    """Type-specific patterns followed by the common ones."""
    return RISK_PATTERNS.get(document_type, []) + COMMON_RISK_PATTERNS


def risk_taxonomy_for(document_type: DocumentType) -> list[str]:
    """Classification labels of the form ``risk_type:severity`` plus ``none``."""
    labels = []
    for risk_type in CLASSIFIER_RISK_TYPES.get(document_type, CLASSIFIER_RISK_TYPES[DocumentType.UNKNOWN]):
        for level in RiskLevel:
            labels.append(f"{risk_type}:{level.value}")
    labels.append("none")
    return labels


# =============================================================================
# Terminology Bias
# =============================================================================

TERMINOLOGY = {
    DocumentType.RENTAL: (
        "This is a rental agreement. Refer to the parties as 'tenant' and 'landlord', "
        "and use plain terms such as 'rent', 'security deposit' and 'lease period'."
    ),
    DocumentType.EMPLOYMENT: (
        "This is an employment contract. Refer to the parties as 'employee' and 'employer', "
        "and use plain terms such as 'salary', 'notice period' and 'working hours'."
    ),
    DocumentType.LOAN: (
        "This is a loan agreement. Refer to the parties as 'borrower' and 'lender', "
        "and use plain terms such as 'interest', 'instalment' and 'outstanding amount'."
    ),
    DocumentType.GOVERNMENT: (
        "This is a government document. Refer to 'the authority' and 'the applicant' or "
        "'the citizen', and explain official terms in everyday words."
    ),
    DocumentType.UNKNOWN: (
        "The document type is unknown. Use neutral terms such as 'the first party' and "
        "'the second party' unless the clause names them."
    ),
}

# =============================================================================
# LLM Prompt Templates
# =============================================================================

LLM_PROMPTS = {
    "analysis_system": """You explain legal clauses to people without legal training.
Rules:
1. Use ONLY what the clause says. Never add obligations, rights, amounts, dates or parties that are not in the clause.
2. Write short, plain sentences.
3. Reply with a single JSON object and nothing else.""",

    "clause_analysis": """{terminology}

Clause:
\"\"\"
{clause}
\"\"\"

Return JSON with these keys:
- "explanation": a plain-language explanation of the clause (at most 4 sentences)
- "key_points": list of short key points taken from the clause (may be empty)
- "obligations": list of obligations the clause places on a party, each naming the party (may be empty)
- "risk_level": one of "low", "medium", "high" for the reader""",

    "answer_system": """You answer questions about ONE legal document using ONLY the numbered sources provided.
If the sources do not contain the answer, say so by setting "answerable" to false.
Never use outside knowledge. Reply with a single JSON object and nothing else.""",

    "answer": """Question: {question}

SOURCES:
{sources}

Return JSON with these keys:
- "answer": a plain-language answer that cites sources inline as [1], [2]
- "citations": list of the source numbers that support the answer
- "confidence": number between 0 and 1 for how well the sources answer the question
- "answerable": true if the sources answer the question, otherwise false""",

    "classify_system": """You are a strict classifier. Reply with exactly one label from the list and nothing else.""",

    "classify": """Labels:
{labels}

Text:
\"\"\"
{text}
\"\"\"

Label:""",
}

# Phrases a generation uses when the sources do not answer the question
INSUFFICIENT_CONTEXT_PATTERNS = [
    r"(?i)\b(?:sources?|context|document)\s+(?:does|do)\s+not\s+(?:contain|mention|say|address|specify)",
    r"(?i)\bnot\s+(?:mentioned|specified|addressed|covered)\s+in\s+the\s+(?:sources?|context|document)",
    r"(?i)\bcannot\s+(?:be\s+)?(?:answer|determine)\w*\s+(?:this\s+)?(?:from|based\s+on)\s+the\s+(?:sources?|context|document)",
    r"(?i)\bno\s+(?:relevant\s+)?information\s+(?:about|on|regarding)\b",
]

# =============================================================================
# Words ignored when comparing content
# =============================================================================

STOPWORDS = frozenset({
    "a", "an", "the", "and", "or", "but", "if", "then", "of", "to", "in", "on",
    "at", "by", "for", "with", "from", "as", "is", "are", "was", "were", "be",
    "been", "being", "it", "its", "this", "that", "these", "those", "shall",
    "will", "would", "should", "may", "might", "must", "can", "could", "do",
    "does", "did", "has", "have", "had", "not", "no", "any", "all", "each",
    "every", "such", "which", "who", "whom", "what", "when", "where", "how",
    "i", "you", "your", "we", "our", "they", "their", "he", "she", "his", "her",
    "them", "there", "here", "into", "upon", "under", "than", "so", "also",
    "other", "per",
})

NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6, "seven": 7,
    "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12, "fifteen": 15,
    "twenty": 20, "thirty": 30, "forty": 40, "forty-five": 45, "fifty": 50,
    "sixty": 60, "ninety": 90, "hundred": 100,
    "first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5, "tenth": 10,
}
