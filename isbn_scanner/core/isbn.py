import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Pattern, Tuple


ISBN_VALIDATION = re.compile(r"^(?:\d{9}[\dX]|\d{13})$")

_SEPARATORS = re.compile(r"[\s\-]+")
_LABEL = re.compile(r"^(?:ISBN(?:1[03])?:?)+")

_LABEL_PREFIX = r"ISBN(?:-?1[03])?[:\s-]*"
_ISBN13_BODY = r"97[89](?:[ -]?\d){10}"
_ISBN10_BODY = r"\d(?:[ -]?\d){8}[ -]?[\dX]"


def normalize(value: Optional[str]) -> str:
    """
    Clean an identifier: drop whitespace and hyphens, uppercase, and remove a
    leading "ISBN" / "ISBN-10" / "ISBN-13" label. Applying it twice is a no-op.
    """
    if not value:
        return ""
    cleaned = _SEPARATORS.sub("", value).upper()
    return _LABEL.sub("", cleaned)


def is_valid(value: Optional[str]) -> bool:
    """Shape check only: 10 chars (last may be X) or 13 digits. No checksum."""
    if not value:
        return False
    return bool(ISBN_VALIDATION.match(normalize(value)))


def to_isbn10(isbn13: str) -> Optional[str]:
    """
    Format-only conversion used as a last catalog retry: the "978" prefix is
    dropped and the remaining characters are kept as they are. No check digit
    is recomputed.
    """
    cleaned = normalize(isbn13)
    if len(cleaned) == 13 and cleaned.isdigit() and cleaned.startswith("978"):
        return cleaned[3:]
    return None


@dataclass(frozen=True)
class IdentifierCandidate:
    value: str
    valid: bool
    rule: str

    @classmethod
    def from_raw(cls, raw: str, rule: str) -> "IdentifierCandidate":
        value = normalize(raw)
        return cls(value=value, valid=bool(ISBN_VALIDATION.match(value)), rule=rule)


class IdentifierExtractor:
    """
    Pulls an ISBN out of unstructured (usually OCR) text.

    Rules are tried most specific first and the first one producing a
    shape-valid candidate wins. When none do, a lenient scan over long
    digit/space/hyphen runs is used as a last resort.
    """

    LENIENT_RUN = re.compile(r"[\d\s-]{15,20}")

    def __init__(self, validator: Callable[[str], bool] = is_valid):
        self.validator = validator
        self.rules: List[Tuple[str, Pattern[str]]] = [
            ("isbn13_labelled", re.compile(_LABEL_PREFIX + r"(" + _ISBN13_BODY + r")(?!\d)", re.IGNORECASE)),
            ("isbn10_labelled", re.compile(_LABEL_PREFIX + r"(" + _ISBN10_BODY + r")(?![\dX])", re.IGNORECASE)),
            ("isbn13_bare", re.compile(r"(?<!\d)(" + _ISBN13_BODY + r")(?!\d)")),
            ("isbn10_bare", re.compile(r"(?<![\dX])(" + _ISBN10_BODY + r")\b", re.IGNORECASE)),
        ]

    def apply_rule(self, name: str, text: str) -> Optional[IdentifierCandidate]:
        """Run a single named rule and return its first valid candidate."""
        pattern = dict(self.rules)[name]
        for match in pattern.finditer(text or ""):
            candidate = IdentifierCandidate.from_raw(match.group(1), name)
            if candidate.valid and self.validator(candidate.value):
                return candidate
        return None

    def extract_candidate(self, text: Optional[str]) -> Optional[IdentifierCandidate]:
        if not text:
            return None
        for name, _ in self.rules:
            candidate = self.apply_rule(name, text)
            if candidate is not None:
                return candidate
        return self.extract_lenient_candidate(text)

    def extract_lenient_candidate(self, text: Optional[str]) -> Optional[IdentifierCandidate]:
        if not text:
            return None
        runs = self.LENIENT_RUN.findall(text)
        if not runs:
            return None
        # max() keeps the first of equally long runs
        longest = max(runs, key=len)
        candidate = IdentifierCandidate.from_raw(longest, "lenient")
        if candidate.valid and self.validator(candidate.value):
            return candidate
        return None

    def extract(self, text: Optional[str]) -> Optional[str]:
        candidate = self.extract_candidate(text)
        return candidate.value if candidate else None

    def extract_lenient(self, text: Optional[str]) -> Optional[str]:
        candidate = self.extract_lenient_candidate(text)
        return candidate.value if candidate else None


def extract_isbn(text: Optional[str]) -> Optional[str]:
    """
    Convenience function to extract an ISBN from OCR text.

    Args:
        text (str): Text that may contain an ISBN

    Returns:
        str: The normalized ISBN, or None
    """
    return IdentifierExtractor().extract(text)
