# finpilot/core/normalize.py
"""
Locale-tolerant date and amount primitives shared by every statement parser.

Dates are always handed back as ``DD/MM/YYYY`` strings; amounts as floats,
with ``nan`` signalling a token that could not be converted.
"""
import math
import re
from datetime import date
from typing import List, Optional

SPANISH_MONTHS = {
    'ENE': 1, 'FEB': 2, 'MAR': 3, 'ABR': 4, 'MAY': 5, 'JUN': 6,
    'JUL': 7, 'AGO': 8, 'SEP': 9, 'SET': 9, 'OCT': 10, 'NOV': 11, 'DIC': 12,
}

_MONTH_ALT = '|'.join(SPANISH_MONTHS)

# DD/MM/YYYY, DD/MM/YY, DD-MM-YYYY and DD-MMM-YY
DATE_RX = re.compile(
    rf"(?<!\d)(?:\d{{2}}[/-]\d{{2}}[/-](?:\d{{4}}|\d{{2}})|\d{{2}}-(?:{_MONTH_ALT})-\d{{2}})(?!\d)",
    re.I,
)

# A number ending in a 2-digit fractional part: 1.234,56 / 1,234.56 / -40.000,00
AMOUNT_RX = re.compile(r"-?\d[\d.,]*[.,]\d{2}(?!\d)")

_NUMERIC_DATE = re.compile(r"^(\d{1,2})[/.-](\d{1,2})[/.-](\d{4}|\d{2})$")
# Spreadsheet cells may carry a time part: 2025-10-05 00:00:00
_ISO_DATE = re.compile(r"^(\d{4})[/-](\d{1,2})[/-](\d{1,2})(?:[ T]\d{1,2}:\d{2}(?::\d{2}(?:\.\d+)?)?)?$")
_TEXT_DATE = re.compile(r"^(\d{1,2})-([A-Za-z]{3})-(\d{4}|\d{2})$")
_CLEAN_AMOUNT = re.compile(r"[^\d,.\-]")
_WHITESPACE = re.compile(r"\s+")


def _expand_year(year: str) -> int:
    return 2000 + int(year) if len(year) == 2 else int(year)


def normalize_date(raw) -> Optional[str]:
    """Return ``raw`` as ``DD/MM/YYYY`` or None when it is not a real calendar date."""
    if raw is None:
        return None
    raw = str(raw).strip()

    m = _NUMERIC_DATE.match(raw)
    if m:
        day, month, year = int(m.group(1)), int(m.group(2)), _expand_year(m.group(3))
    else:
        m = _ISO_DATE.match(raw)
        if m:
            year, month, day = int(m.group(1)), int(m.group(2)), int(m.group(3))
        else:
            m = _TEXT_DATE.match(raw)
            if not m:
                return None
            month = SPANISH_MONTHS.get(m.group(2).upper())
            if month is None:
                return None
            day, year = int(m.group(1)), _expand_year(m.group(3))

    try:
        d = date(year, month, day)
    except ValueError:
        return None
    return format_date(d)


def format_date(d: date) -> str:
    return f"{d.day:02d}/{d.month:02d}/{d.year:04d}"


def parse_date(canonical: str) -> date:
    day, month, year = canonical.split('/')
    return date(int(year), int(month), int(day))


def parse_amount(raw) -> float:
    """
    Convert an amount token to float.

    When both ``.`` and ``,`` appear, whichever comes last is the decimal
    separator. A lone ``,`` is decimal only when followed by exactly two
    trailing digits. Anything unparsable yields ``nan``.
    """
    if raw is None:
        return math.nan
    cleaned = _CLEAN_AMOUNT.sub('', str(raw))
    if not cleaned:
        return math.nan

    if ',' in cleaned and '.' in cleaned:
        if cleaned.rfind(',') > cleaned.rfind('.'):
            cleaned = cleaned.replace('.', '').replace(',', '.')
        else:
            cleaned = cleaned.replace(',', '')
    elif ',' in cleaned:
        if re.search(r",\d{2}$", cleaned) and cleaned.count(',') == 1:
            cleaned = cleaned.replace(',', '.')
        else:
            cleaned = cleaned.replace(',', '')

    try:
        return float(cleaned)
    except ValueError:
        return math.nan


def is_valid_amount(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def find_date(text: str):
    return DATE_RX.search(text)


def find_amounts(text: str) -> List[re.Match]:
    return list(AMOUNT_RX.finditer(text))


def clean_description(desc: str) -> str:
    return _WHITESPACE.sub(' ', desc or '').strip()


def title_case(name: str) -> str:
    return ' '.join(part.capitalize() for part in name.lower().split())
