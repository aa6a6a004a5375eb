"""Investment activity labeling from transaction descriptions.

Only very narrow, high-precision patterns are recognised. A description
that matches none, or matches patterns for more than one label, gets no
label; the user can always set one by hand.
"""

import re

_LABEL_PATTERNS: tuple[tuple[str, re.Pattern], ...] = (
    (
        "Dividend",
        re.compile(
            r"^(?:(?:ORDINARY|QUALIFIED|CASH|NON-?QUALIFIED)\s+)?DIVIDENDS?"
            r"(?:\s+(?:RECEIVED|PAID|PAYMENT|CREDIT))?(?:\s*[-:]?\s*[A-Z.]{1,6})?$"
        ),
    ),
    (
        "Interest",
        re.compile(
            r"^(?:(?:CREDIT|BANK|CASH|MONEY MARKET)\s+)?INTEREST"
            r"(?:\s+(?:EARNED|PAID|PAYMENT|INCOME|CREDIT))?$"
        ),
    ),
    (
        "Fee",
        re.compile(
            r"^(?:ADVISORY|MANAGEMENT|ACCOUNT|MAINTENANCE|CUSTODIAN|WIRE|TRANSFER)\s+FEES?$"
        ),
    ),
    (
        "Contribution",
        re.compile(
            r"^(?:(?:EMPLOYEE|EMPLOYER|PAYROLL|IRA|ROTH(?:\s+IRA)?|401\(?K\)?|403\(?B\)?)\s+)?"
            r"CONTRIBUTIONS?$"
        ),
    ),
)

# Words that make an otherwise matching description ambiguous
_AMBIGUOUS_MARKERS = re.compile(r"\b(?:REINVEST\w*|REVERSAL|ADJ(?:USTMENT)?|CANCEL\w*)\b")


def _normalize(name: str) -> str:
    return re.sub(r"\s+", " ", (name or "").upper()).strip()


def infer_activity_label(name: str | None) -> str | None:
    """Infer Dividend / Interest / Fee / Contribution, or None."""
    description = _normalize(name or "")
    if not description or _AMBIGUOUS_MARKERS.search(description):
        return None

    matches = [label for label, pattern in _LABEL_PATTERNS if pattern.match(description)]
    if len(matches) != 1:
        return None
    return matches[0]
