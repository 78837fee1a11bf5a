"""
Keyword rules for booking-related signals (Spanish and English).

All matchers take raw user text and normalize it first: lowercase, accents
stripped, punctuation other than ``: @ . -`` collapsed to spaces.
"""

import re
import unicodedata
from typing import Iterable, Literal, Optional


DEFAULT_BOOKING_TERMS = [
    "cita", "consulta", "reservar", "reserva", "turno", "agendar",
    "appointment", "book", "booking", "schedule",
    # common misspellings
    "agedar", "agendar cita", "agendarme", "agenda", "agend", "bok", "scheduel",
]


def normalize_text(text: Optional[str]) -> str:
    """Lowercase, strip accents and collapse punctuation to single spaces."""
    t = unicodedata.normalize("NFD", str(text or "").lower())
    t = "".join(ch for ch in t if unicodedata.category(ch) != "Mn")
    t = re.sub(r"[^\w\s:@.-]", " ", t)
    return re.sub(r"\s+", " ", t).strip()


def _has(pattern: str, text: str) -> bool:
    return re.search(pattern, text) is not None


# === Booking intent ===

def matches_booking_intent(text: str, terms: Iterable[str]) -> bool:
    """Check text against a tenant's booking terms.

    Multi-word terms match as substrings; single words match on word
    boundaries.
    """
    t = normalize_text(text)
    for term in terms:
        x = normalize_text(term)
        if not x:
            continue
        if " " in x:
            if x in t:
                return True
        elif re.search(rf"\b{re.escape(x)}\b", t):
            return True
    return False


def is_direct_booking_request(text: str) -> bool:
    """Imperative or explicit booking request ("book me", "quiero agendar")."""
    t = normalize_text(text)

    if _has(r"\b(agenda|agendame|reservame|reserva|programa|programame)\b", t):
        return True
    if _has(
        r"\b(quiero|quisiera|necesito|me gustaria|podemos|podria|puedes|puede|vamos a)\s+"
        r"(agendar|reservar|programar)\b",
        t,
    ):
        return True
    if (
        _has(r"\b(sacar|hacer|separar|reservar|agendar|programar)\s+(una\s+)?(cita|turno|consulta)\b", t)
        or _has(r"\b(cita|turno|consulta)\s+(para|pa|con)\b", t)
        or _has(r"\bquiero\s+(una\s+)?(cita|turno|consulta)\b", t)
    ):
        return True
    if _has(r"\b(book|booking|schedule|reserve)\b", t) and _has(
        r"\b(me|an appointment|appointment|a call|a consultation|a session)\b", t
    ):
        return True
    return _has(r"\b(book me|schedule me|reserve)\b", t)


def detect_purpose(text: str) -> Optional[str]:
    """Map a message to an appointment purpose, or None."""
    t = normalize_text(text)

    if _has(r"\b(cita|agendar|agenda|agendacion|reservar|reserva|turno|appointment|book|schedule|appt)\b", t):
        return "cita"
    if _has(r"\b(clase|class|trial|session|sesion|workout|training)\b", t):
        return "clase"
    if _has(r"\b(consulta|consultar|consultation|asesoria|assessment|evaluation)\b", t):
        return "consulta"
    if _has(r"\b(llamada|call|phone|telefono|videollamada|video call)\b", t):
        return "llamada"
    if _has(r"\b(visita|visit|presencial|in person|walk in)\b", t):
        return "visita"
    if _has(r"\b(demo|demostracion|demonstration|presentation)\b", t):
        return "demo"
    return None


def detect_daypart(text: str) -> Optional[Literal["morning", "afternoon"]]:
    """Morning/afternoon preference, or None."""
    t = normalize_text(text)

    if _has(r"\b(manana|morning|temprano|por la manana|antes del mediodia)\b", t) or _has(
        r"\b([1-9]|1[01])\s*(am|a\.m\.)", t
    ):
        return "morning"
    if (
        _has(r"\b(tarde|afternoon|por la tarde|despues del mediodia)\b", t)
        or _has(r"\b(noche|evening|night|por la noche)\b", t)
        or _has(r"\b(1[0-2]|[1-9])\s*(pm|p\.m\.)", t)
    ):
        return "afternoon"
    if _has(r"\b(mas temprano|tempranito|early)\b", t):
        return "morning"
    if _has(r"\b(mas tarde|later)\b", t):
        return "afternoon"
    return None


# === Flow control ===

_STOP_COMMANDS = re.compile(r"^(para|para ya|para por favor|para pls|para porfa|deten|alto|stop|quit|exit)$")


def wants_to_cancel(text: str) -> bool:
    """Customer wants to abandon the booking flow."""
    t = normalize_text(text)

    if _has(r"\b(cancelar|cancela|cancelacion|anular|anula)\b", t) or _has(
        r"\b(cancel|cancel it|stop booking|stop scheduling)\b", t
    ):
        return True

    # "para" alone is a command; "para las 2pm" is not
    if _STOP_COMMANDS.match(t):
        return True

    return (
        _has(r"\b(olvida|olvidalo|mejor no|ya no|ya no quiero|prefiero no)\b", t)
        or _has(r"\b(stop|deten|detener|exit|quit)\b", t)
        or _has(r"\b(nevermind|never mind|forget it)\b", t)
        or _has(r"\b(no gracias|no thanks?)\b", t)
        or _has(r"\b(nah|nope)\b", t)
    )


def wants_to_change_topic(text: str) -> bool:
    """Customer switched to a non-booking question (price, hours, location, ...)."""
    t = normalize_text(text)
    raw = str(text or "").lower()

    return (
        _has(r"\b(precio|precios|cuanto|tarifa|costo|costos|cuanto sale)\b", t)
        or _has(r"\b(price|prices|pricing|cost|costs|rate|rates|fee|fees)\b", t)
        or _has(r"\b(how\s*much|what'?s\s+the\s+price|what\s+is\s+the\s+price)\b", raw)
        or _has(r"\b(ubicacion|direccion)\b", t)
        or _has(r"\b(address|location|where\s+is)\b", t)
        or _has(r"\b(info|informacion|detalles|mas informacion)\b", t)
        or _has(r"\b(details|more\s+info|information)\b", t)
        or _has(r"\b(what\s+is\s+this|explain\s+this)\b", t)
        or _has(r"\b(como\s+funciona|como\s+trabaja)\b", t)
        or _has(r"\b(how\s+does\s+it\s+work|how\s+it\s+works)\b", t)
        or _has(r"\b(estan abiertos|abren|cierran|open|close|opening\s+hours|hours\s+of\s+operation)\b", t)
    )


def wants_more_slots(text: str) -> bool:
    """Customer asks for more or different times on the same day."""
    t = normalize_text(text)

    if wants_another_day(text):
        return False

    if _has(r"\b(otra|otras|otro|otros)\s+(hora|horas|horario|horarios|opcion|opciones)\b", t):
        return True
    if _has(r"\bmas\s+(hora|horas|horario|horarios|opcion|opciones)\b", t):
        return True
    if _has(r"\b(ver|mostrar|dame|manda)\s+mas\b", t):
        return True
    if _has(r"\b(siguientes|alternativas|mas|otra|otras|otro|otros)\b", t):
        return True
    if _has(r"\b(despues|antes)\b", t):
        return True
    if _has(r"\b(more|other|another)\s+(time|times|slot|slots|option|options)\b", t):
        return True
    if _has(r"\b(show|see|send)\s+more\b", t):
        return True
    if _has(r"\b(more|other|another)\b", t):
        return True
    return _has(r"\b(later|earlier|after|before)\b", t)


def wants_another_day(text: str) -> bool:
    """Customer asks for a different day."""
    t = normalize_text(text)

    return (
        _has(r"\b(otro|otra)\b.*\bdia\b", t)
        or _has(r"\bmas\s+dias\b", t)
        or _has(r"\bpasado\s+manana\b", t)
        or _has(r"\b(another|next|other|different)\s+day\b", t)
    )


def asks_for_hours(text: str) -> bool:
    """Customer asks which times are available without naming one."""
    t = normalize_text(text)
    return _has(
        r"\b(horarios?|horas|disponibles?|disponibilidad|available|availability|what times|which times)\b",
        t,
    )


# === Answers ===

_YES_RE = re.compile(
    r"^(si|sip|claro|dale|ok|okay|okey|vale|listo|perfecto|correcto|confirmo|confirmar|de acuerdo|"
    r"yes|yeah|yep|yup|sure|correct|confirm|confirmed|sounds good|go ahead|book it|do it)"
    r"(\s+(por favor|please|pls|gracias|thanks|confirmo|confirm|perfecto|dale))*$"
)
_NO_RE = re.compile(
    r"^(no|nop|nel|negativo|mejor no|no gracias|incorrecto|no es correcto|"
    r"nope|nah|no thanks|not really|wrong|that s wrong)"
    r"(\s+(por favor|please|gracias|thanks))*$"
)
_COURTESY_RE = re.compile(
    r"^(gracias|muchas gracias|mil gracias|ok gracias|perfecto gracias|genial|excelente|"
    r"thanks|thank you|thx|ty|great|awesome|perfect|cool|ok|okay|listo|vale)"
    r"(\s+(gracias|thanks|thank you|!+))*$"
)


def is_yes(text: str) -> bool:
    """Affirmative answer to a yes/no question."""
    t = normalize_text(text).rstrip(".!")
    return bool(_YES_RE.match(t))


def is_no(text: str) -> bool:
    """Negative answer to a yes/no question."""
    t = normalize_text(text).rstrip(".!")
    return bool(_NO_RE.match(t))


def is_courtesy(text: str) -> bool:
    """Thank-you / acknowledgement with no further request."""
    t = normalize_text(text).rstrip(".!")
    return bool(_COURTESY_RE.match(t))
