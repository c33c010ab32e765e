# clinicflow/extractor.py
"""
Turns free-text bill notes into discrete lab tests.

Notes written by the billing workflow look like
    "Fever - Consultation Fee: ₹500, Tests: CBC Test, Dengue Test"
but older or hand-typed notes vary, so extraction is heuristic: a list of labelled
patterns is tried in order, then a capitalised-word fallback. It never raises; a note
we cannot read yields no tests rather than blocking the bill request.
"""
import logging
import re
from typing import List, NamedTuple

from .models import TestType

logger = logging.getLogger("clinicflow.extractor")


class ExtractedTest(NamedTuple):
    name: str
    type: TestType


# --- CLEANUP ---
_DISEASE_PREFIX_RE = re.compile(r"^[^\n]*?\s+-\s+(?=Consultation\s+Fee)", re.IGNORECASE)
_FEE_RE = re.compile(r"Consultation\s+Fee:.*?(?=Tests?\b|$)", re.IGNORECASE)
_CURRENCY_RE = re.compile(r"₹\s*\d+(?:\.\d+)?")

# --- LABELLED SECTIONS (first match wins) ---
_SECTION_PATTERNS = [
    re.compile(r"Tests?:\s*([^.]+)", re.IGNORECASE),
    re.compile(r"Test\s+Names?:?\s*([^.]+)", re.IGNORECASE),
    re.compile(r"Laboratory\s+Tests?:?\s*([^.]+)", re.IGNORECASE),
    re.compile(r"Lab\s+Tests?:?\s*([^.]+)", re.IGNORECASE),
    re.compile(r"Blood\s+Tests?:?\s*([^.]+)", re.IGNORECASE),
    re.compile(r"Urine\s+Tests?:?\s*([^.]+)", re.IGNORECASE),
    re.compile(r"Imaging\s+Tests?:?\s*([^.]+)", re.IGNORECASE),
    re.compile(r"Diagnostic\s+Tests?:?\s*([^.]+)", re.IGNORECASE),
]

_SEPARATORS_RE = re.compile(r"[,;|&]")
_CONNECTIVE_RE = re.compile(r"^(and|or|with|for)$", re.IGNORECASE)
_TEST_PREFIX_RE = re.compile(r"^tests?\b\s*", re.IGNORECASE)
_MONEY_WORD_RE = re.compile(r"^(?:₹|(?:rupees?|dollars?|amount|fees?)\b)", re.IGNORECASE)

# --- FALLBACK ---
FALLBACK_LIMIT = 5
_STOPWORDS = {
    "patient", "doctor", "amount", "consultation", "fee", "test", "tests",
    "blood", "urine", "imaging", "rupee", "rupees", "dollar", "dollars",
}

# --- TYPE INFERENCE ---
BLOOD_KEYWORDS = (
    "blood", "cbc", "sugar", "glucose", "hba1c", "hemoglobin", "platelet", "serum", "plasma",
    "cholesterol", "lipid", "thyroid", "malaria", "dengue", "typhoid", "liver", "kidney", "ecg",
)
_IMAGING_RE = re.compile(r"x-?ray|\bct\b|mri|ultrasound|scan", re.IGNORECASE)


def infer_test_type(test_name: str) -> TestType:
    name = (test_name or "").lower()
    if any(keyword in name for keyword in BLOOD_KEYWORDS):
        return TestType.BLOOD
    if "urine" in name:
        return TestType.URINE
    if _IMAGING_RE.search(name):
        return TestType.IMAGING
    return TestType.OTHER


def _clean(notes: str) -> str:
    text = _DISEASE_PREFIX_RE.sub("", notes)
    text = _FEE_RE.sub("", text)
    text = _CURRENCY_RE.sub("", text)
    return text.strip()


def _split_section(section: str) -> List[str]:
    names = []
    for token in _SEPARATORS_RE.split(section):
        token = token.strip()
        if not token or _CONNECTIVE_RE.match(token):
            continue
        # "Test-Glucose" -> "Glucose"
        token = _TEST_PREFIX_RE.sub("", token).lstrip("-:/.# ").strip()
        if len(token) > 2 and not _MONEY_WORD_RE.match(token):
            names.append(token)
    return names


def _fallback_names(text: str) -> List[str]:
    names = []
    for word in text.split():
        word = word.strip(".,;:|&()[]\"'")
        if len(word) > 3 and word[0].isupper() and word.lower() not in _STOPWORDS:
            names.append(word)
        if len(names) == FALLBACK_LIMIT:
            break
    return names


def _dedupe(names: List[str]) -> List[str]:
    seen = set()
    unique = []
    for name in names:
        key = name.lower()
        if key not in seen:
            seen.add(key)
            unique.append(name)
    return unique


def extract_names(notes: str) -> List[str]:
    if not notes or not notes.strip():
        return []

    text = _clean(notes)
    for pattern in _SECTION_PATTERNS:
        match = pattern.search(text)
        if match:
            names = _split_section(match.group(1))
            if names:
                return _dedupe(names)

    names = _fallback_names(text)
    if names:
        logger.warning("No test section in notes, using fallback names: %s", names)
    return _dedupe(names)


def extract(notes: str) -> List[ExtractedTest]:
    """Extract `(name, type)` pairs from bill notes. Returns [] when nothing is found."""
    try:
        return [ExtractedTest(name, infer_test_type(name)) for name in extract_names(notes)]
    except Exception:
        logger.exception("Test extraction failed; continuing without tests")
        return []
