"""Date and time helpers for receipt parsing."""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from ticketfox.domain.receipt import DateOrder

MIN_YEAR = 2000
MAX_YEAR = 2100

ENGLISH_MONTHS = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

SPANISH_MONTHS = {
    "enero": 1,
    "febrero": 2,
    "marzo": 3,
    "abril": 4,
    "mayo": 5,
    "junio": 6,
    "julio": 7,
    "agosto": 8,
    "septiembre": 9,
    "octubre": 10,
    "noviembre": 11,
    "diciembre": 12,
}

SPANISH_MONTHS_SHORT = {
    "ene": 1,
    "feb": 2,
    "mar": 3,
    "abr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "ago": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dic": 12,
}

_EN = r"(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)\w*\.?"


@dataclass(frozen=True)
class DateMatch:
    value: date
    text: str


def _expand_year(year: int) -> int:
    return year + 2000 if year < 100 else year


def _numeric(hint: DateOrder | None) -> Callable[[re.Match[str]], tuple[int, int, int]]:
    def convert(match: re.Match[str]) -> tuple[int, int, int]:
        first, second = int(match.group(1)), int(match.group(2))
        year = _expand_year(int(match.group(3)))
        if first > 12:
            return year, second, first
        if second > 12:
            return year, first, second
        if hint == "MDY":
            return year, first, second
        return year, second, first

    return convert


def _ymd(match: re.Match[str]) -> tuple[int, int, int]:
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


def _month_day_named(match: re.Match[str]) -> tuple[int, int, int]:
    return _expand_year(int(match.group(3))), ENGLISH_MONTHS[match.group(1).lower()[:3]], int(match.group(2))


def _day_month_named(match: re.Match[str]) -> tuple[int, int, int]:
    return _expand_year(int(match.group(3))), ENGLISH_MONTHS[match.group(2).lower()[:3]], int(match.group(1))


def _spanish(match: re.Match[str]) -> tuple[int, int, int]:
    return int(match.group(3)), SPANISH_MONTHS[match.group(2).lower()], int(match.group(1))


def _spanish_short(match: re.Match[str]) -> tuple[int, int, int]:
    return int(match.group(3)), SPANISH_MONTHS_SHORT[match.group(2).lower()[:3]], int(match.group(1))


def _compact(match: re.Match[str]) -> tuple[int, int, int]:
    return int(match.group(3)), int(match.group(2)), int(match.group(1))


def _generic_patterns(
    hint: DateOrder | None,
) -> tuple[tuple[re.Pattern[str], Callable[[re.Match[str]], tuple[int, int, int]]], ...]:
    numeric = _numeric(hint)
    return (
        (re.compile(r"\b(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})\b"), numeric),
        (re.compile(r"\b(\d{4})[/\-.](\d{1,2})[/\-.](\d{1,2})\b"), _ymd),
        (re.compile(r"\b(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2})(?!\d)"), numeric),
        (re.compile(_EN + r"\s+(\d{1,2}),?\s+(\d{4})", re.IGNORECASE), _month_day_named),
        (re.compile(r"(\d{1,2})\s+" + _EN + r"\s+(\d{4})", re.IGNORECASE), _day_month_named),
        (re.compile(r"(\d{1,2})\s+" + _EN + r"\s+(\d{2})(?!\d)", re.IGNORECASE), _day_month_named),
        (re.compile(_EN + r"\s+(\d{1,2}),?\s+(\d{2})(?!\d)", re.IGNORECASE), _month_day_named),
        (
            re.compile(
                r"(\d{1,2})\s+de\s+(enero|febrero|marzo|abril|mayo|junio|julio|agosto|septiembre|"
                r"octubre|noviembre|diciembre)\s+(?:de\s+)?(\d{4})",
                re.IGNORECASE,
            ),
            _spanish,
        ),
        (
            re.compile(
                r"(\d{1,2})[/\-](ene|feb|mar|abr|may|jun|jul|ago|sep|oct|nov|dic)\w*[/\-](\d{4})",
                re.IGNORECASE,
            ),
            _spanish_short,
        ),
        (re.compile(r"\b(\d{2})(\d{2})(\d{4})\b"), _compact),
    )


def _build_date(year: int, month: int, day: int) -> date | None:
    if not (MIN_YEAR <= year <= MAX_YEAR):
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_date(text: str, hint: DateOrder | None = None) -> DateMatch | None:
    """
    Find the first valid date in a line of receipt text.

    Numeric dates are disambiguated structurally first (a component above 12
    must be the day); only a fully ambiguous date falls back to ``hint``,
    and day-first is the default.

    Returns:
        The parsed date and the matched text, or None.
    """
    for pattern, convert in _generic_patterns(hint):
        match = pattern.search(text)
        if not match:
            continue
        built = _build_date(*convert(match))
        if built is not None:
            return DateMatch(value=built, text=match.group(0))
    return None


def parse_date_with_patterns(text: str, patterns: Sequence[re.Pattern[str]]) -> DateMatch | None:
    """Try day-month-year patterns in order; two-digit years map to 20xx."""
    for pattern in patterns:
        match = pattern.search(text)
        if not match or len(match.groups()) < 3:
            continue
        built = _build_date(_expand_year(int(match.group(3))), int(match.group(2)), int(match.group(1)))
        if built is not None:
            return DateMatch(value=built, text=match.group(0))
    return None


_TIME_12H = re.compile(r"(\d{1,2}):(\d{2})\s*(am|pm|a\.m\.|p\.m\.)", re.IGNORECASE)
_TIME_24H = re.compile(r"(\d{1,2}):(\d{2})(?::\d{2})?(?!\s*(?:am|pm))", re.IGNORECASE)
_TIME_H = re.compile(r"\b(\d{1,2})[hH](\d{2})\b")


def parse_time(text: str) -> str | None:
    """Return the first plausible time in ``HH:MM`` form."""
    match = _TIME_12H.search(text)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        is_pm = match.group(3).lower().startswith("p")
        if is_pm and hours != 12:
            hours += 12
        if not is_pm and hours == 12:
            hours = 0
        if hours < 24 and minutes < 60:
            return f"{hours:02d}:{minutes:02d}"

    for pattern in (_TIME_24H, _TIME_H):
        match = pattern.search(text)
        if match:
            hours, minutes = int(match.group(1)), int(match.group(2))
            if hours < 24 and minutes < 60:
                return f"{hours:02d}:{minutes:02d}"
    return None


def is_recent_date(value: date, now: datetime) -> bool:
    """True when ``value`` falls within the year before ``now`` (inclusive)."""
    today = now.date()
    return today - timedelta(days=365) <= value <= today


def detect_date_order(text: str) -> DateOrder | None:
    """
    Guess the date component order of a receipt.

    Structural evidence (a component above 12) wins; otherwise the density
    of European vs US keywords decides. Returns None when still ambiguous.
    """
    if re.search(r"\b\d{4}[/\-.]\d{1,2}[/\-.]\d{1,2}\b", text):
        return "YMD"

    for match in re.finditer(r"\b(\d{1,2})[/\-.](\d{1,2})[/\-.]\d{2,4}\b", text):
        first, second = int(match.group(1)), int(match.group(2))
        if first > 12:
            return "DMY"
        if second > 12:
            return "MDY"

    lowered = text.lower()
    european = len(re.findall(r"€|iva|artícul|teléfono|compra", lowered))
    american = len(re.findall(r"\$|tax(?!i)|subtotal", lowered))
    if european > american:
        return "DMY"
    if american > european:
        return "MDY"
    return None
