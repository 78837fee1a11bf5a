"""
Regex-based entity extraction for booking messages.

Extracts: date-time tokens, bare dates (explicit, relative, weekday names,
day of month), times of day, soft time constraints, slot choices and
customer identity (name, email, phone). Spanish and English.

Dates are resolved in the business's timezone; pass ``today`` to pin the
reference date.
"""

import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from app.core.intelligence.intent.rules import normalize_text
from .types import AllInOne, ContactInfo, TimeConstraint

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
_EMAIL_FULL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]{2,}$")
_PHONE_RE = re.compile(r"(\+?\d[\d\s().-]{5,18}\d)")
_DATETIME_TOKEN_RE = re.compile(r"\b(\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2})\b")
_DATE_TOKEN_RE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")
_OPTION_RANGE_RE = re.compile(r"\b\d{1,2}\s*-\s*\d{1,2}\b")

_AMPM_RE = re.compile(r"\b(am|pm|a\.m\.|p\.m\.)", re.IGNORECASE)
_HHMM_RE = re.compile(r"\b([01]?\d|2[0-3]):([0-5]\d)\b")
_CHOICE_CUE_RE = re.compile(
    r"\b(ok|okay|vale|listo|perfecto|opcion|option|elige|escojo|pick|choose|la|el|nro|num|numero)\s*#?\s*(\d)\b"
    r"|#\s*(\d)\b"
)

_WEEKDAYS = {
    "lunes": 0, "monday": 0,
    "martes": 1, "tuesday": 1,
    "miercoles": 2, "wednesday": 2,
    "jueves": 3, "thursday": 3,
    "viernes": 4, "friday": 4,
    "sabado": 5, "saturday": 5,
    "domingo": 6, "sunday": 6,
}

# Filler words removed before reading a name out of a free-text message
_FILLER_RE = re.compile(
    r"\b(quiero|quisiera|me gustaria|hola|buenas|buenos|agendar|agenda|cita|consulta|demo|clase|"
    r"reservar|reserva|turno|appointment|booking|schedule|para|por favor|pls|please)\b",
    re.IGNORECASE,
)
_NAME_INTRO_RE = re.compile(r"\b(mi nombre es|soy|me llamo|name is|my name is|i am|i'm)\b", re.IGNORECASE)
_GREETING_RE = re.compile(r"\b(hola|buenas|buenos|hi|hello|hey|por favor|pls|please)\b", re.IGNORECASE)
_NAME_CHARS_RE = re.compile(r"[^a-zA-ZáéíóúüñÁÉÍÓÚÜÑ\s'-]")


def _today(tz: Optional[ZoneInfo], today: Optional[date]) -> date:
    if today is not None:
        return today
    return datetime.now(tz).date() if tz else date.today()


def _day_of_month(today: date, day: int) -> Optional[date]:
    """Next date (today or later) falling on a given day of month."""
    if not 1 <= day <= 31:
        return None
    year, month = today.year, today.month
    for _ in range(13):
        try:
            candidate = date(year, month, day)
        except ValueError:
            candidate = None
        if candidate and candidate >= today:
            return candidate
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return None


# === Dates ===

def extract_datetime_token(text: str) -> Optional[str]:
    """Find an explicit "YYYY-MM-DD HH:mm" token."""
    m = _DATETIME_TOKEN_RE.search(str(text or ""))
    return m.group(1).replace("T", " ") if m else None


def extract_date_only_token(
    text: str,
    tz: Optional[ZoneInfo] = None,
    today: Optional[date] = None,
) -> Optional[date]:
    """Resolve a date mentioned without a time.

    Recognizes, in order: YYYY-MM-DD, hoy/today, pasado mañana/day after
    tomorrow, mañana/tomorrow, weekday names (next occurrence, never
    today), "el 25"/"para el 25"/"día 25", and a bare day number. A range
    like "1-5" (the option menu) never counts as a day number.

    Args:
        text: User message
        tz: Business timezone (for "today")
        today: Reference date override

    Returns:
        date or None
    """
    raw = str(text or "")
    t = normalize_text(raw)
    ref = _today(tz, today)

    explicit = _DATE_TOKEN_RE.search(raw)
    if explicit and not _DATETIME_TOKEN_RE.search(raw):
        try:
            return date.fromisoformat(explicit.group(1))
        except ValueError:
            return None

    if re.search(r"\b(hoy|today)\b", t):
        return ref
    if re.search(r"\b(pasado manana|day after tomorrow)\b", t):
        return ref + timedelta(days=2)
    # "por la mañana" is a daypart, not tomorrow
    if re.search(r"(?<!la )\bmanana\b", t) or re.search(r"\btomorrow\b", t):
        return ref + timedelta(days=1)

    for name, weekday in _WEEKDAYS.items():
        if re.search(rf"\b{name}\b", t):
            diff = (weekday - ref.weekday()) % 7 or 7
            return ref + timedelta(days=diff)

    m = re.search(r"\b(?:para\s+el|para|el|dia|este|the)\s+(\d{1,2})(?:st|nd|rd|th)?\b", t)
    if m and not re.search(r"\b(a|para)\s+las?\s+" + m.group(1) + r"\b", t):
        return _day_of_month(ref, int(m.group(1)))

    if not _OPTION_RANGE_RE.search(t) and not re.search(r"[:@]", t) and not _AMPM_RE.search(t):
        m = re.search(r"\b(\d{1,2})\b", t)
        if m and not re.search(r"\b((a|para)\s+las?|at|around|sobre|tipo)\s+\d", t):
            return _day_of_month(ref, int(m.group(1)))

    return None


# === Times ===

def looks_like_option_choice(text: str) -> bool:
    """Short reply naming a menu option ("2", "ok 3", "#4") rather than a time."""
    s = str(text or "").strip().lower()
    if _AMPM_RE.search(s) or _HHMM_RE.search(s):
        return False
    m = _CHOICE_CUE_RE.search(s) or re.match(r"^\s*(\d)\s*\.?\s*$", s)
    if not m:
        return False
    digit = next(g for g in m.groups() if g and g.isdigit())
    return 1 <= int(digit) <= 5


def extract_time_only_token(text: str) -> Optional[time]:
    """Find a time of day ("5pm", "17:30", "a las 5", "at 5").

    A short option choice such as "ok 3" is never read as a time.
    """
    s = str(text or "").strip().lower()
    if looks_like_option_choice(s):
        return None

    m = _HHMM_RE.search(s)
    if m:
        return time(int(m.group(1)), int(m.group(2)))

    m = re.search(r"\b(1[0-2]|[1-9])(?::([0-5]\d))?\s*(am|pm|a\.m\.|p\.m\.)", s)
    if m:
        hour = int(m.group(1))
        minute = int(m.group(2) or 0)
        pm = m.group(3).startswith("p")
        if pm and hour != 12:
            hour += 12
        if not pm and hour == 12:
            hour = 0
        return time(hour, minute)

    m = re.search(r"\ba\s+las?\s+(2[0-3]|1\d|[1-9])(?::([0-5]\d))?\b", s)
    if m:
        return time(int(m.group(1)), int(m.group(2) or 0))

    if re.search(r"\b(at|a\s+las|a\s+la|para\s+las|para\s+la|around|sobre|aprox|aproximadamente)\b", s):
        m = re.search(r"\b([01]?\d|2[0-3])\b", s)
        if m:
            return time(int(m.group(1)), 0)

    return None


def has_explicit_meridiem(text: str) -> bool:
    """Time carries am/pm or a 24h HH:mm."""
    s = str(text or "").lower()
    return bool(_AMPM_RE.search(s) or _HHMM_RE.search(s))


def extract_requested_datetime(
    text: str,
    tz: ZoneInfo,
    today: Optional[date] = None,
) -> Optional[datetime]:
    """Resolve a date and a time named in one message into a local instant.

    "a las 3" with no am/pm reads hours 1-7 as afternoon.
    """
    token = extract_datetime_token(text)
    if token:
        try:
            return datetime.strptime(token, "%Y-%m-%d %H:%M").replace(tzinfo=tz)
        except ValueError:
            return None

    day = extract_date_only_token(text, tz=tz, today=today)
    at = extract_time_only_token(text)
    if day is None or at is None:
        return None

    s = str(text or "").lower()
    if (
        not has_explicit_meridiem(s)
        and re.search(r"\b(a\s+las|a\s+la|para\s+las|para\s+la)\b", s)
        and 1 <= at.hour <= 7
    ):
        at = at.replace(hour=at.hour + 12)

    return datetime.combine(day, at, tzinfo=tz)


def wants_specific_time(text: str) -> bool:
    """Customer asks for a particular time ("do you have 5pm?", "a las 4")."""
    raw = str(text or "").strip()
    t = normalize_text(raw)

    if re.match(r"^\s*[1-5]\s*$", raw):
        return False

    asking = (
        re.search(r"\b(tienes|tiene|hay|habra|puedes|puede|podemos|puedo|disponible|disponibilidad)\b", t)
        or re.search(r"\b(is|are|do\s+you\s+have|can\s+you|available)\b", t)
        or "?" in raw
    )
    has_at = re.search(r"\b(a\s+las|a\s+la|para\s+las|para\s+la|at|for)\b", t)
    return extract_time_only_token(raw) is not None and bool(asking or has_at)


def extract_time_constraint(text: str) -> Optional[TimeConstraint]:
    """Soft time preference: earliest, any morning/afternoon, after, before, around."""
    t = str(text or "").lower().strip()
    n = normalize_text(t)

    if re.search(r"\b(lo\s+mas\s+temprano|tempranito|lo\s+mas\s+pronto|a\s+primera\s+hora|lo\s+antes\s+posible)\b", n) or re.search(
        r"\b(earliest|as\s+early\s+as\s+possible|as\s+soon\s+as\s+possible|first\s+thing|asap)\b", n
    ):
        return TimeConstraint("earliest")

    any_time = re.search(
        r"\b(cuando\s+puedas|cuando\s+se\s+pueda|cualquier\s+hora|cuando\s+sea|me\s+da\s+igual|sin\s+preferencia|como\s+sea)\b",
        n,
    ) or re.search(r"\b(when\s+you\s+can|whenever|any\s*time|no\s+preference|doesn\s?t\s+matter|whatever\s+works)\b", n)
    if any_time and re.search(r"\b(manana|morning|temprano|early)\b", n):
        return TimeConstraint("any_morning")
    if any_time and re.search(r"\b(tarde|afternoon)\b", n):
        return TimeConstraint("any_afternoon")

    if (
        re.search(r"\bdespues\s+de\s+(las?\s+)?\d{1,2}(:\d{2})?", n)
        or re.search(r"\ba\s+partir\s+de\s+(las?\s+)?\d{1,2}(:\d{2})?", n)
        or re.search(r"\b(after|from)\s+\d{1,2}(:\d{2})?", n)
    ):
        at = extract_time_only_token(_with_at_cue(t))
        if at:
            return TimeConstraint("after", at)

    if (
        re.search(r"\bantes\s+de\s+(las?\s+)?\d{1,2}(:\d{2})?", n)
        or re.search(r"\bno\s+mas\s+tarde\s+de\s+(las?\s+)?\d{1,2}(:\d{2})?", n)
        or re.search(r"\b(before|no\s+later\s+than)\s+\d{1,2}(:\d{2})?", n)
    ):
        at = extract_time_only_token(_with_at_cue(t))
        if at:
            return TimeConstraint("before", at)

    if (
        re.search(r"\b(tipo|como|aprox|aproximadamente|alrededor\s+de|por\s+ahi)\b", n)
        or re.search(r"\b(around|about|approx|approximately|roughly)\b", n)
        or re.search(r"\b\d{1,2}\s+y\s+(algo|pico)\b", n)
        or re.search(r"\b\d{1,2}\s*-?\s*ish\b", n)
    ):
        at = extract_time_only_token(_with_at_cue(t))
        if at:
            return TimeConstraint("around", at)

    return None


def _with_at_cue(text: str) -> str:
    # "after 4" has no am/pm; a leading cue lets the bare hour be read
    return f"at {text}" if not re.search(r"\b(at|a\s+las?)\b", text) else text


# === Slot choice ===

def parse_slot_choice(text: str, max_choice: int) -> Optional[int]:
    """Read a 1-based option number ("2", "option 2", "#2", "pick 2").

    Time-looking text ("2pm", "14:00") is never a choice.
    """
    raw = str(text or "").strip().lower()
    if not raw or has_explicit_meridiem(raw):
        return None

    t = re.sub(r"\s+", " ", raw)
    m = (
        re.match(r"^\s*(\d{1,2})\s*\.?\s*$", t)
        or re.search(r"(?:\b(?:la|el|opcion|opción|option|numero|número|num|nro|number)\s*|#\s*)(\d{1,2})\b", t)
        or re.search(r"\b(?:me quedo con|escojo|elijo|elige|pick|choose|take)\s*(?:la|el|the)?\s*(\d{1,2})\b", t)
    )
    if not m:
        return None

    n = int(m.group(1))
    return n if 1 <= n <= max_choice else None


# === Identity ===

def parse_email(text: str) -> Optional[str]:
    """Validate a whole message as an email address."""
    raw = str(text or "").strip().lower()
    return raw if raw and _EMAIL_FULL_RE.match(raw) else None


def find_email(text: str) -> Optional[str]:
    """Find an email address anywhere in a message."""
    m = EMAIL_RE.search(str(text or ""))
    return m.group(0).lower() if m else None


def parse_phone(text: str) -> Optional[str]:
    """Find a phone number and normalize it to +digits / digits (7-15 digits)."""
    source = _DATE_TOKEN_RE.sub(" ", _DATETIME_TOKEN_RE.sub(" ", str(text or "")))
    for m in _PHONE_RE.finditer(source):
        candidate = m.group(1)
        digits = re.sub(r"\D", "", candidate)
        if 7 <= len(digits) <= 15:
            return ("+" if candidate.strip().startswith("+") else "") + digits
    return None


def parse_full_name(text: str) -> Optional[str]:
    """Accept a name with at least two words made of letters."""
    raw = re.sub(r"\s+", " ", str(text or "").strip())
    if not raw or len(raw.split(" ")) < 2:
        return None
    letters = _NAME_CHARS_RE.sub("", raw).strip()
    if len([p for p in letters.split(" ") if p]) < 2:
        return None
    return raw


def _remove_once(haystack: str, needle: str) -> str:
    idx = haystack.lower().find(needle.lower())
    if idx == -1:
        return haystack
    return (haystack[:idx] + " " + haystack[idx + len(needle):]).strip()


def _clean_name_candidate(raw: str) -> str:
    return re.sub(r"\s+", " ", re.sub(r"[,|;]", " ", raw)).strip()


def parse_name_email_only(text: str) -> ContactInfo:
    """Name and/or email in one message ("Ana Ruiz ana@x.com")."""
    raw = str(text or "").strip()
    email = find_email(raw)
    phone = parse_phone(raw)

    candidate = raw
    if email:
        candidate = _remove_once(candidate, email)
    if phone:
        candidate = re.sub(r"\+?\d[\d\s().-]{5,18}\d", " ", candidate)
    candidate = _clean_name_candidate(candidate)
    candidate = _NAME_INTRO_RE.sub("", candidate)
    candidate = re.sub(r"\s+", " ", _GREETING_RE.sub("", candidate)).strip()

    return ContactInfo(
        name=parse_full_name(candidate) if candidate else None,
        email=email,
        phone=phone,
    )


def parse_all_in_one(text: str) -> AllInOne:
    """Name + email + "YYYY-MM-DD HH:mm" in one message.

    Example: "Juan Perez, juan@email.com, 2026-01-21 14:00"
    """
    raw = str(text or "").strip()
    email = find_email(raw)
    token = extract_datetime_token(raw)

    candidate = raw
    if email:
        candidate = _remove_once(candidate, email)
    if token:
        m = _DATETIME_TOKEN_RE.search(candidate)
        if m:
            candidate = _remove_once(candidate, m.group(1))

    candidate = _clean_name_candidate(candidate)
    candidate = re.sub(r"\s+", " ", _FILLER_RE.sub("", candidate)).strip()
    candidate = re.sub(r"\s+", " ", _NAME_INTRO_RE.sub("", candidate)).strip()

    return AllInOne(
        name=parse_full_name(candidate) if candidate else None,
        email=email,
        datetime_token=token,
    )
