import re
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, NamedTuple, Optional, Tuple

DEFAULT_TZ_OFFSET_HOURS = 3
DEFAULT_LOCALE = "ru"

# Hour used when a date is given without a time
DEFAULT_HOUR = 9

_TIME = r'(\d{1,2})(?::(\d{2}))?(?!\d)\s*([ap]\.?m\.?)?'

# Date and time, e.g. "15/03/2024 at 14:30", "15.03.24 в 9:00 pm"
DATE_TIME_PATTERN = re.compile(
    r'\b(\d{1,2})[./-](\d{1,2})[./-](\d{4}|\d{2})(?:\s+(?:at|в))?\s+(\d{1,2}):(\d{2})(?:\s*([ap]\.?m\.?))?',
    re.IGNORECASE
)

# Date only
DATE_PATTERN = re.compile(r'\b(\d{1,2})[./-](\d{1,2})[./-](\d{4}|\d{2})\b')

# Relative time, e.g. "in 30 minutes", "через 2 дня"
RELATIVE_PATTERN = re.compile(
    r'\b(?:in|через)\s+(\d+)\s+'
    r'(minutes?|mins?|hours?|days?|weeks?|минут[уы]?|час(?:а|ов)?|дн(?:я|ей)|день|недел[юиь])',
    re.IGNORECASE
)

# Named day with an optional time, e.g. "tomorrow at 9", "завтра в 10:30"
DAY_PATTERN = re.compile(
    r'\b(day after tomorrow|tomorrow|today|послезавтра|завтра|сегодня)\b'
    r'(?:\s+(?:at|в)\s+' + _TIME + r')?',
    re.IGNORECASE
)

# Time only, e.g. "at 14:30", "в 9", "21:00"
AT_TIME_PATTERN = re.compile(r'(?:\bat|(?<!\w)в)\s+' + _TIME, re.IGNORECASE)
CLOCK_PATTERN = re.compile(r'\b(\d{1,2}):(\d{2})\s*([ap]\.?m\.?)?', re.IGNORECASE)

# Next week / next month
NEXT_PERIOD_PATTERN = re.compile(r'\bnext (week|month)\b', re.IGNORECASE)

DAY_OFFSETS = {
    'today': 0,
    'сегодня': 0,
    'tomorrow': 1,
    'завтра': 1,
    'day after tomorrow': 2,
    'послезавтра': 2,
}

RU_MONTHS_GENITIVE = [
    'января', 'февраля', 'марта', 'апреля', 'мая', 'июня',
    'июля', 'августа', 'сентября', 'октября', 'ноября', 'декабря',
]

EN_MONTHS = [
    'January', 'February', 'March', 'April', 'May', 'June',
    'July', 'August', 'September', 'October', 'November', 'December',
]


class ParsedDueTime(NamedTuple):
    """Result of parsing a due time out of free text."""
    due_at: datetime  # UTC
    start: int  # Matched span within the text
    end: int
    extra_spans: Tuple[Tuple[int, int], ...] = ()  # e.g. a time written apart from the day

    @property
    def span(self):
        return self.start, self.end

    @property
    def spans(self) -> Tuple[Tuple[int, int], ...]:
        return ((self.start, self.end),) + self.extra_spans


DueTimeParser = Callable[[str, datetime, float], Optional[ParsedDueTime]]


def _tz(tz_offset_hours: float) -> timezone:
    return timezone(timedelta(hours=tz_offset_hours))


def _to_24h(hour: int, ampm: Optional[str]) -> int:
    if not ampm:
        return hour
    if hour > 12:
        raise ValueError(f"Invalid 12h hour: {hour}")
    if hour == 12 and ampm.lower().startswith('a'):
        return 0
    if hour < 12 and ampm.lower().startswith('p'):
        return hour + 12
    return hour


def _year(raw: str) -> int:
    return int("20" + raw if len(raw) == 2 else raw)


def _relative_delta(amount: int, unit: str) -> timedelta:
    unit = unit.lower()
    if unit.startswith(('min', 'мин')):
        return timedelta(minutes=amount)
    if unit.startswith(('hour', 'час')):
        return timedelta(hours=amount)
    if unit.startswith(('day', 'дн', 'ден')):
        return timedelta(days=amount)
    return timedelta(weeks=amount)


def parse_due_time(
    text: str,
    reference_time: datetime,
    tz_offset_hours: float = DEFAULT_TZ_OFFSET_HOURS
) -> Optional[ParsedDueTime]:
    """
    Parse a due time from text.

    Wall-clock expressions are read in the fixed UTC offset given, relative
    expressions are added to the reference time. A bare time that has already
    passed today rolls over to tomorrow.

    Args:
        text: Text to parse
        reference_time: "Now" for relative expressions (aware datetime)
        tz_offset_hours: User's UTC offset in hours

    Returns:
        ParsedDueTime in UTC, or None if no time expression was recognised
    """
    if not text:
        return None

    if reference_time.tzinfo is None:
        reference_time = reference_time.replace(tzinfo=timezone.utc)
    now = reference_time.astimezone(_tz(tz_offset_hours))

    try:
        # Date and time
        match = DATE_TIME_PATTERN.search(text)
        if match:
            day, month, year, hour, minute, ampm = match.groups()
            local = datetime(_year(year), int(month), int(day),
                             _to_24h(int(hour), ampm), int(minute), tzinfo=now.tzinfo)
            return _result(local, match)

        # Relative time
        match = RELATIVE_PATTERN.search(text)
        if match:
            amount, unit = match.groups()
            return _result(now + _relative_delta(int(amount), unit), match)

        # Named day, optionally with a time
        match = DAY_PATTERN.search(text)
        if match:
            day_word, hour, minute, ampm = match.groups()
            offset = DAY_OFFSETS[day_word.lower()]
            time_match = None
            if hour is None:
                # Time written apart from the day, e.g. "at 17:00 tomorrow", "в 10 завтра"
                time_match = _time_outside(text, match)
                if time_match:
                    hour, minute, ampm = time_match.groups()
                elif offset == 0:
                    # "today" without a time: one hour from now
                    return _result(now + timedelta(hours=1), match)
                else:
                    hour = DEFAULT_HOUR
            target = now + timedelta(days=offset)
            local = target.replace(hour=_to_24h(int(hour), ampm), minute=int(minute or 0),
                                   second=0, microsecond=0)
            return _result(local, match, time_match)

        # Date only
        match = DATE_PATTERN.search(text)
        if match:
            day, month, year = match.groups()
            local = datetime(_year(year), int(month), int(day), DEFAULT_HOUR, tzinfo=now.tzinfo)
            return _result(local, match)

        # Time only
        match = AT_TIME_PATTERN.search(text) or CLOCK_PATTERN.search(text)
        if match:
            hour, minute, ampm = match.groups()
            local = now.replace(hour=_to_24h(int(hour), ampm), minute=int(minute or 0),
                                second=0, microsecond=0)
            # If the time is in the past, schedule for tomorrow
            if local <= now:
                local += timedelta(days=1)
            return _result(local, match)

        # Next week / next month
        match = NEXT_PERIOD_PATTERN.search(text)
        if match:
            if match.group(1).lower() == 'week':
                # 9:00 AM next Monday
                days_until_monday = (7 - now.weekday()) % 7 or 7
                local = now + timedelta(days=days_until_monday)
            else:
                # 9:00 AM on the 1st of next month
                if now.month == 12:
                    local = now.replace(year=now.year + 1, month=1, day=1)
                else:
                    local = now.replace(month=now.month + 1, day=1)
            local = local.replace(hour=DEFAULT_HOUR, minute=0, second=0, microsecond=0)
            return _result(local, match)
    except ValueError:
        # Out-of-range day, month, hour or minute
        return None

    return None


def _time_outside(text: str, day_match: re.Match) -> Optional[re.Match]:
    """Find a time expression that does not overlap the day word."""
    for pattern in (AT_TIME_PATTERN, CLOCK_PATTERN):
        for match in pattern.finditer(text):
            if match.end() <= day_match.start() or match.start() >= day_match.end():
                return match
    return None


def _result(local: datetime, match: re.Match, extra: Optional[re.Match] = None) -> ParsedDueTime:
    extra_spans = ((extra.start(), extra.end()),) if extra else ()
    return ParsedDueTime(local.astimezone(timezone.utc), match.start(), match.end(), extra_spans)


def strip_span(text: str, start: int, end: int) -> str:
    """Remove a span from text and tidy up the whitespace left behind."""
    return strip_spans(text, [(start, end)])


def strip_spans(text: str, spans: Iterable[Tuple[int, int]]) -> str:
    """Remove non-overlapping spans from text and tidy up the whitespace left behind."""
    for start, end in sorted(spans, reverse=True):
        text = text[:start] + " " + text[end:]
    return " ".join(text.split())


def format_due_at(
    due_at: datetime,
    tz_offset_hours: float = DEFAULT_TZ_OFFSET_HOURS,
    locale: str = DEFAULT_LOCALE
) -> str:
    """
    Render a due time for the user.

    Args:
        due_at: Due time (aware datetime)
        tz_offset_hours: User's UTC offset in hours
        locale: "ru" or "en"

    Returns:
        e.g. "2 января 2024 г., 9:00" or "January 2, 2024 at 9:00 AM"
    """
    local = due_at.astimezone(_tz(tz_offset_hours))

    if locale == "en":
        hour = local.hour % 12 or 12
        ampm = "AM" if local.hour < 12 else "PM"
        return f"{EN_MONTHS[local.month - 1]} {local.day}, {local.year} at {hour}:{local.minute:02d} {ampm}"

    return f"{local.day} {RU_MONTHS_GENITIVE[local.month - 1]} {local.year} г., {local.hour}:{local.minute:02d}"
