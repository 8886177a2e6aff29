"""
Academic calendar: translation between an enrollment cycle and a grade.

The cycle is the academic year in which a student's first tracked grade began.
The academic year rolls over on 1 September, so dates in January-August belong
to the year that started the previous September.

All functions are pure; callers pass the reference date or year explicitly.
"""

from datetime import date, datetime, timezone
from typing import Optional, Union

from registry.core.enums import CyclePhase, Gender, StudentStatus

ACADEMIC_YEAR_START_MONTH = 9
MIN_PLAUSIBLE_CYCLE = 2000

# Entry grade first, terminal grade last.
GRADE_ORDER = ("ט'", "י'", 'י"א', 'י"ב', 'י"ג', 'י"ד')

# Geresh / gershayim lookalikes found in spreadsheets and copy-pasted text.
_QUOTE_VARIANTS = {
    "׳": "'",  # HEBREW PUNCTUATION GERESH
    "״": '"',  # HEBREW PUNCTUATION GERSHAYIM
    "‘": "'",
    "’": "'",
    "`": "'",
    "“": '"',
    "”": '"',
    "''": '"',
}

_GENDER_ALIASES = {
    "male": Gender.male,
    "m": Gender.male,
    "זכר": Gender.male,
    "ז": Gender.male,
    "female": Gender.female,
    "f": Gender.female,
    "נקבה": Gender.female,
    "נ": Gender.female,
}

_STATUS_ALIASES = {
    "studying": StudentStatus.studying,
    "לומד": StudentStatus.studying,
    "לומדת": StudentStatus.studying,
    "completed": StudentStatus.completed,
    "סיים לימודים": StudentStatus.completed,
    "סיימה לימודים": StudentStatus.completed,
    "discontinued": StudentStatus.discontinued,
    "הפסיק לימודים": StudentStatus.discontinued,
    "הפסיקה לימודים": StudentStatus.discontinued,
}

YearLike = Union[int, str]


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column in this service stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def current_academic_year(now: Optional[Union[date, datetime]] = None) -> int:
    """Academic year containing `now`: same calendar year from September, previous year before."""
    now = now or utcnow()
    return now.year if now.month >= ACADEMIC_YEAR_START_MONTH else now.year - 1


def parse_cycle(cycle: Optional[YearLike]) -> Optional[int]:
    """Integer year for a cycle value, or None when it is not a 4-digit year."""
    if cycle is None:
        return None
    text = str(cycle).strip()
    if len(text) != 4 or not text.isdigit():
        return None
    return int(text)


def cycle_phase(cycle: YearLike, reference_year: int) -> CyclePhase:
    diff = reference_year - int(cycle)
    if diff < 0:
        return CyclePhase.FUTURE
    if diff > len(GRADE_ORDER) - 1:
        return CyclePhase.ENDED
    return CyclePhase.ACTIVE


def grade_from_cycle(cycle: YearLike, reference_year: int) -> Optional[str]:
    """Grade a cycle is in during `reference_year`; None unless the cycle is active."""
    if cycle_phase(cycle, reference_year) != CyclePhase.ACTIVE:
        return None
    return GRADE_ORDER[reference_year - int(cycle)]


def cycle_from_grade(grade: Optional[str], reference_year: int) -> Optional[str]:
    """Cycle implied by a grade in `reference_year`, or None if unrecognized or implausible."""
    canonical = normalize_grade(grade)
    if canonical not in GRADE_ORDER:
        return None
    cycle = reference_year - GRADE_ORDER.index(canonical)
    if cycle < MIN_PLAUSIBLE_CYCLE or cycle > reference_year + 1:
        return None
    return str(cycle)


def is_recognized_grade(grade: Optional[str]) -> bool:
    return grade in GRADE_ORDER


def normalize_grade(label: Optional[str]) -> Optional[str]:
    """
    Canonical grade ordinal for a label, e.g. "ט", "ט׳", "יא", "י״א" -> the GRADE_ORDER spelling.
    Blank -> None. Unrecognized labels are returned trimmed and unchanged.
    """
    if label is None:
        return None
    text = str(label).strip()
    if not text:
        return None
    if text in GRADE_ORDER:
        return text

    candidate = text
    for variant, replacement in _QUOTE_VARIANTS.items():
        candidate = candidate.replace(variant, replacement)
    candidate = candidate.replace(" ", "")
    if candidate in GRADE_ORDER:
        return candidate

    # Bare letters: "ט", "י" get a geresh, two-letter forms get gershayim before the last letter.
    letters = candidate.replace("'", "").replace('"', "")
    if len(letters) == 1:
        candidate = letters + "'"
    elif len(letters) == 2:
        candidate = letters[0] + '"' + letters[1]
    if candidate in GRADE_ORDER:
        return candidate
    return text


def normalize_gender(label: Optional[str]) -> Optional[str]:
    if label is None:
        return None
    text = str(label).strip()
    if not text:
        return None
    gender = _GENDER_ALIASES.get(text.lower())
    return gender.value if gender else text


def normalize_status(label: Optional[str]) -> Optional[str]:
    if label is None:
        return None
    text = str(label).strip()
    if not text:
        return None
    status = _STATUS_ALIASES.get(text.lower())
    return status.value if status else text
