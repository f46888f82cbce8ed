import logging
import re
from collections.abc import Callable
from datetime import datetime, timezone

import dateutil.parser
from dateutil.tz import tzoffset, tzutc

logger = logging.getLogger("timeparse")

_HOUR = 3600

# RFC 822 section 5.1 zone names, plus the ones commonly seen in the wild.
_NAMED_ZONES: dict[str, tzutc | tzoffset] = {
    "UT": tzutc(),
    "UTC": tzutc(),
    "GMT": tzutc(),
    "Z": tzutc(),
    "EST": tzoffset("EST", -5 * _HOUR),
    "EDT": tzoffset("EDT", -4 * _HOUR),
    "CST": tzoffset("CST", -6 * _HOUR),
    "CDT": tzoffset("CDT", -5 * _HOUR),
    "MST": tzoffset("MST", -7 * _HOUR),
    "MDT": tzoffset("MDT", -6 * _HOUR),
    "PST": tzoffset("PST", -8 * _HOUR),
    "PDT": tzoffset("PDT", -7 * _HOUR),
    "BST": tzoffset("BST", 1 * _HOUR),
    "CET": tzoffset("CET", 1 * _HOUR),
    "CEST": tzoffset("CEST", 2 * _HOUR),
}

_RFC822_NAMED_ZONE_RE = re.compile(
    r"^[A-Za-z]{3}, \d{1,2} [A-Za-z]{3} \d{4} \d{1,2}:\d{2}:\d{2} [A-Za-z]{1,5}$"
)


def _strptime(fmt: str) -> Callable[[str], datetime | None]:
    def parse(text: str) -> datetime | None:
        try:
            dt = datetime.strptime(text, fmt)
        except ValueError:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt

    return parse


def _rfc822_named_zone(text: str) -> datetime | None:
    if not _RFC822_NAMED_ZONE_RE.match(text):
        return None
    zone = text.rsplit(" ", 1)[1].upper()
    if zone not in _NAMED_ZONES:
        return None
    try:
        dt = dateutil.parser.parse(text, tzinfos=_NAMED_ZONES)
    except (ValueError, OverflowError):
        return None
    if dt.tzinfo is None:
        return None
    return dt


_DATE_RULES: list[Callable[[str], datetime | None]] = [
    _strptime("%a, %d %b %Y %H:%M:%S %z"),
    _rfc822_named_zone,
    _strptime("%Y-%m-%dT%H:%M:%S%z"),
    _strptime("%Y-%m-%dT%H:%M:%S.%f%z"),
    _strptime("%Y-%m-%d"),
]


def parse_datetime(text: str | None) -> datetime | None:
    """
    Parse a feed date into an aware datetime, or None if no format matches.

    Tried in order: RFC 822 with a numeric zone, RFC 822 with a named zone,
    ISO 8601, ISO 8601 with fractional seconds, and a bare date (midnight UTC).
    """
    if not text:
        return None
    text = text.strip()
    for rule in _DATE_RULES:
        if dt := rule(text):
            return dt
    logger.debug("Unparsable date: %s", text)
    return None


def parse_date(text: str | None) -> int:
    dt = parse_datetime(text)
    if dt is None:
        return 0
    return int(dt.timestamp())


def format_display_date(timestamp: int) -> str:
    if timestamp <= 0:
        return ""
    dt = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return f"{dt:%b} {dt.day}, {dt.year}"


def _int_or_zero(text: str) -> int:
    try:
        return int(text.strip())
    except ValueError:
        return 0


def parse_duration(text: str | None) -> int:
    """
    Parse an itunes:duration value into seconds.

    Accepts bare seconds, H:MM:SS and M:SS. A component that isn't an
    integer counts as zero; anything else yields 0.
    """
    if not text:
        return 0
    text = text.strip()

    try:
        return int(text)
    except ValueError:
        pass

    parts = [_int_or_zero(part) for part in text.split(":")]
    if len(parts) == 3:
        return parts[0] * 3600 + parts[1] * 60 + parts[2]
    elif len(parts) == 2:
        return parts[0] * 60 + parts[1]
    elif len(parts) == 1:
        return parts[0]
    else:
        return 0


def format_duration(seconds: int) -> str:
    if seconds <= 0:
        return ""
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    else:
        return f"{minutes}:{seconds:02d}"
