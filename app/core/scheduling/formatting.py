"""
Reply rendering for the booking conversation.

Slot lists, human-readable dates and every fixed reply, in English and
Spanish. Month and weekday names are spelled out here so output does not
depend on the host locale.
"""

from datetime import datetime
from typing import Literal, Optional
from zoneinfo import ZoneInfo

from app.core.scheduling.intervals import Interval, Slot
from app.core.scheduling.types import Lang

SlotsStyle = Literal["default", "closest", "more", "sameDay", "daypart", "neutral"]
AskMode = Literal["number", "anything"]

_MONTHS = {
    "en": ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"],
    "es": ["ene", "feb", "mar", "abr", "may", "jun", "jul", "ago", "sept", "oct", "nov", "dic"],
}
_WEEKDAYS = {
    "en": ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"],
    "es": ["lun", "mar", "mié", "jue", "vie", "sáb", "dom"],
}


def _lang(lang: Optional[str]) -> str:
    return "es" if lang == "es" else "en"


def _local(start: datetime, tz: ZoneInfo) -> datetime:
    return start.astimezone(tz)


def _clock(dt: datetime, lang: str) -> str:
    """12-hour clock: "2:00 PM" / "2:00 p. m."."""
    hour = dt.hour % 12 or 12
    if lang == "es":
        return f"{hour}:{dt.minute:02d} {'a. m.' if dt.hour < 12 else 'p. m.'}"
    return f"{hour}:{dt.minute:02d} {'AM' if dt.hour < 12 else 'PM'}"


# === Dates and times ===

def format_time_only(start: datetime, tz: ZoneInfo, lang: Lang) -> str:
    """Local time of day ("2:00 PM")."""
    return _clock(_local(start, tz), _lang(lang))


def format_day_label(start: datetime, tz: ZoneInfo, lang: Lang) -> str:
    """Local day without year ("Mon, Jan 26" / "lun 26 ene")."""
    dt = _local(start, tz)
    lg = _lang(lang)
    weekday = _WEEKDAYS[lg][dt.weekday()]
    month = _MONTHS[lg][dt.month - 1]
    if lg == "es":
        return f"{weekday} {dt.day} {month}"
    return f"{weekday}, {month} {dt.day}"


def format_slot_human(start: datetime, tz: ZoneInfo, lang: Lang) -> str:
    """Date and time without year ("Jan 26 at 2:00 PM" / "26 ene, 2:00 p. m.")."""
    dt = _local(start, tz)
    lg = _lang(lang)
    month = _MONTHS[lg][dt.month - 1]
    if lg == "es":
        return f"{dt.day} {month}, {_clock(dt, lg)}"
    return f"{month} {dt.day} at {_clock(dt, lg)}"


def format_slot_with_weekday(start: datetime, tz: ZoneInfo, lang: Lang) -> str:
    """Weekday, date and time ("Mon, Jan 26 at 2:00 PM")."""
    dt = _local(start, tz)
    lg = _lang(lang)
    if lg == "es":
        return f"{format_day_label(start, tz, lang)}, {_clock(dt, lg)}"
    return f"{format_day_label(start, tz, lang)} at {_clock(dt, lg)}"


def format_biz_window(window: Interval, tz: ZoneInfo, lang: Lang) -> str:
    """Business window ("9:00 AM - 5:00 PM" / "09:00 - 17:00")."""
    start, end = _local(window.start, tz), _local(window.end, tz)
    if _lang(lang) == "es":
        return f"{start:%H:%M} - {end:%H:%M}"
    return f"{_clock(start, 'en')} - {_clock(end, 'en')}"


def all_same_day(slots: list[Slot], tz: ZoneInfo) -> bool:
    """Check if every slot starts on the same local date."""
    return len({s.local_date(tz) for s in slots}) <= 1


# === Slot lists ===

_INTRO = {
    "en": {
        "default": "Sure, here are a few available times:",
        "closest": "I'm sorry! That exact time isn't available. Here are the closest options:",
        "more": "No problem, here are a few more options:",
        "sameDay": "Here are the available times for {day}:",
        "daypart": "Here are the available times:",
        "neutral": "",
    },
    "es": {
        "default": "Claro, aquí tienes algunos horarios disponibles:",
        "closest": "Lo siento! Esa hora exacta no está disponible. Estas son las opciones más cercanas:",
        "more": "Perfecto, aquí van más opciones:",
        "sameDay": "Estos son los horarios disponibles para {day}:",
        "daypart": "Aquí tienes los horarios disponibles:",
        "neutral": "",
    },
}

_ASK = {
    "en": {
        "anything": 'Please reply with a number (1-{n}) or tell me a time (like "2pm" / "14:00").',
        "number": "Please reply with the number you prefer (1-{n}).",
    },
    "es": {
        "anything": 'Por favor responde con un número (1-{n}) o dime una hora (como "2pm" / "14:00").',
        "number": "Por favor responde con el número que prefieras (1-{n}).",
    },
}


def render_slots_message(
    slots: list[Slot],
    tz: ZoneInfo,
    lang: Lang,
    style: SlotsStyle = "default",
    ask: AskMode = "number",
    intro: bool = True,
) -> str:
    """Numbered slot list with an intro line and a reply prompt.

    When every slot falls on one local day only the times are listed.

    Args:
        slots: Offered slots (index + 1 is the choice number)
        tz: Business timezone
        lang: Reply language
        style: Intro wording
        ask: "number" asks for a choice; "anything" also invites a time
        intro: Include the intro line

    Returns:
        Message text
    """
    lg = _lang(lang)
    if not slots:
        return reply("no_slots_for_date", lang)

    same_day = all_same_day(slots, tz)
    lines = []
    for i, slot in enumerate(slots, start=1):
        human = format_time_only(slot.start, tz, lang) if same_day else format_slot_human(slot.start, tz, lang)
        lines.append(f"{i}) {human}")

    intro_line = ""
    if intro and style != "neutral":
        day = format_day_label(slots[0].start, tz, lang) if same_day else ""
        if style == "sameDay" and not day:
            intro_line = "Here are the available times for that day:" if lg == "en" else (
                "Estos son los horarios disponibles para ese día:"
            )
        else:
            intro_line = _INTRO[lg][style].format(day=day)

    ask_line = _ASK[lg][ask].format(n=len(slots))
    parts = [intro_line] if intro_line else []
    return "\n".join(parts + lines + [ask_line]).strip()


def build_ask_all_message(lang: Lang) -> str:
    """Ask for name, email and date-time in one message."""
    if _lang(lang) == "es":
        return (
            "Perfecto, te ayudo con eso.\n"
            "Hazme un favor: mándame todo junto en **un solo mensaje**.\n"
            "Tu nombre completo, tu email, y la fecha y hora que te gustaría.\n"
            "Algo así como: Juan Pérez, juan@email.com, 2026-01-21 14:00"
        )
    return (
        "Perfect, I can help you with that.\n"
        "Do me a favor and send me everything in one single message:\n"
        "your full name, your email, and the date and time you want.\n"
        "Something like: John Smith, john@email.com, 2026-01-21 14:00"
    )


# === Fixed replies ===

REPLIES: dict[str, dict[str, str]] = {
    # Entry
    "ask_purpose": {
        "en": "Sure! What would you like to schedule: an appointment, a consultation, or a call?",
        "es": "¡Claro! ¿Qué te gustaría agendar? Una cita, una consulta o una llamada.",
    },
    "ask_purpose_again": {
        "en": "Got it. Is it an appointment, class, consultation, or a call?",
        "es": "Entiendo. ¿Es una cita, clase, consulta o llamada?",
    },
    "ask_daypart": {
        "en": "Sure, I can help you schedule it. Does morning or afternoon work better for you?",
        "es": "Claro, puedo ayudarte a agendar. ¿Te funciona más en la mañana o en la tarde?",
    },
    "ask_daypart_again": {
        "en": "Please reply: morning or afternoon.",
        "es": "Respóndeme: mañana o tarde.",
    },
    # Exits
    "cancel": {
        "en": "Of course, no problem. I'll stop the process for now. Whenever you're ready, just tell me.",
        "es": "Claro, no hay problema. Detengo todo por ahora. Cuando estés listo, solo avísame.",
    },
    "cancel_soft": {
        "en": "No worries, whenever you're ready to schedule, I'll be here to help.",
        "es": "No hay problema, cuando necesites agendar estaré aquí para ayudarte.",
    },
    # Availability
    "no_slots_for_date": {
        "en": "I'm sorry! I couldn't find availability for that date. What other day works for you?",
        "es": "Lo siento! No encontré disponibilidad para esa fecha. ¿Qué otro día te funciona?",
    },
    "no_saved_slots": {
        "en": "I'm sorry! I don't have available times saved for that date. Please send another date (YYYY-MM-DD).",
        "es": "Lo siento! No tengo horarios guardados para esa fecha. Envíame otra fecha (YYYY-MM-DD).",
    },
    "no_next_day": {
        "en": "I'm sorry! I don't see availability on the next day. Would you like to try a different date?",
        "es": "Lo siento! No veo disponibilidad para el próximo día. ¿Quieres probar otra fecha?",
    },
    "no_slots_near_time": {
        "en": "I don't see availability near that time. Would you like something earlier or later?",
        "es": "No veo disponibilidad cerca de esa hora. ¿Te sirve más temprano o más tarde?",
    },
    "no_slots_near_request": {
        "en": "I'm sorry! I don't see availability around that time. Does morning or afternoon work better for you?",
        "es": "Lo siento! No veo disponibilidad cerca de esa hora. ¿Te funciona más en la mañana o en la tarde?",
    },
    "no_daypart_slots": {
        "en": "I'm sorry! I don't see availability in that part of the day over the next few days. Would you like to try a specific date?",
        "es": "Lo siento! No veo disponibilidad en ese horario en los próximos días. ¿Quieres probar una fecha específica?",
    },
    "availability_unverified": {
        "en": "I can't verify availability right now. Please try again in a few minutes.",
        "es": "No puedo verificar la disponibilidad en este momento. Intenta de nuevo en unos minutos.",
    },
    "ask_which_date": {
        "en": "What date should I check? (example: 2026-01-26)",
        "es": "¿Qué fecha reviso? (ej: 2026-01-26)",
    },
    "ask_date_for_time": {
        "en": "What date is that for? (example: 2026-01-26)",
        "es": "¿Para qué fecha sería? (ej: 2026-01-26)",
    },
    "choose_number": {
        "en": 'Reply with a number (1-{n}). You can also say a time like "2pm" or "14:00".',
        "es": 'Responde con un número (1-{n}). También puedes decir una hora como "2pm" o "14:00".',
    },
    "exact_slot_found": {
        "en": "Perfect, I have {when}. Do you want to confirm? (yes/no)",
        "es": "Perfecto, tengo {when}. ¿Confirmas ese horario? (sí/no)",
    },
    # Contact collection
    "picked_ask_name": {
        "en": "Perfect, I can do {when}. What's your full name?",
        "es": "Perfecto, puedo {when}. ¿Cuál es tu nombre completo?",
    },
    "picked_ask_email": {
        "en": "Perfect, I can do {when}. Send your email in ONE message (example: john@email.com).",
        "es": "Perfecto, puedo {when}. Envíame tu email en UN solo mensaje (ej: juan@email.com).",
    },
    "picked_ask_email_phone": {
        "en": "Perfect, I can do {when}. Send your email and phone in ONE message (example: john@email.com, +13055551234).",
        "es": "Perfecto, puedo {when}. Envíame tu email y teléfono en UN solo mensaje (ej: juan@email.com, +13055551234).",
    },
    "missing_name": {
        "en": "I'm missing your first and last name (example: John Smith).",
        "es": "Me falta tu nombre y apellido (ej: Juan Pérez).",
    },
    "missing_email": {
        "en": "I'm missing a valid email (example: name@email.com).",
        "es": "Me falta un email válido (ej: nombre@email.com).",
    },
    "missing_phone": {
        "en": "I got your email. Now send your phone with country code (example: +1 305 555 1234).",
        "es": "Ya tengo tu email. Ahora envíame tu teléfono con código de país (ej: +1 305 555 1234).",
    },
    "missing_email_phone": {
        "en": "Please send your email and phone in ONE message (example: name@email.com, +1 305 555 1234).",
        "es": "Por favor envíame tu email y tu teléfono en UN solo mensaje (ej: nombre@email.com, +1 305 555 1234).",
    },
    "missing_datetime": {
        "en": "I'm missing the date/time. Please use: YYYY-MM-DD HH:mm (example: 2026-01-21 14:00).",
        "es": "Me falta la fecha y hora. Usa: YYYY-MM-DD HH:mm (ej: 2026-01-21 14:00).",
    },
    "ask_time_for_date": {
        "en": "Got it, what time works for you on {day}? Reply with HH:mm (example: 14:00).",
        "es": "Perfecto, ¿a qué hora te gustaría el {day}? Respóndeme con HH:mm (ej: 14:00).",
    },
    # Date/time validation
    "ask_date_first": {
        "en": "What day would you like to book? Please send a date (YYYY-MM-DD).",
        "es": "¿Para qué día quieres agendar? Envíame una fecha (YYYY-MM-DD).",
    },
    "unreadable_time": {
        "en": "I couldn't read that time. Please use HH:mm (example: 14:00).",
        "es": "No pude leer esa hora. Usa HH:mm (ej: 14:00).",
    },
    "unreadable_datetime": {
        "en": "I couldn't read that. Please use: YYYY-MM-DD HH:mm (example: 2026-01-17 15:00).",
        "es": "No pude leer esa fecha/hora. Usa: YYYY-MM-DD HH:mm (ej: 2026-01-17 15:00).",
    },
    "past_time": {
        "en": "That time is in the past. Please send a future time.",
        "es": "Esa hora ya pasó. Envíame una hora futura.",
    },
    "past_datetime": {
        "en": "That date/time is in the past. Please send a future date and time (YYYY-MM-DD HH:mm).",
        "es": "Esa fecha/hora ya pasó. Envíame una fecha y hora futura (YYYY-MM-DD HH:mm).",
    },
    "past_date": {
        "en": "That date is in the past. Please send a future date (YYYY-MM-DD).",
        "es": "Esa fecha ya pasó. Envíame una fecha futura (YYYY-MM-DD).",
    },
    "closed_day": {
        "en": "We're closed that day. Please choose another date.",
        "es": "Ese día estamos cerrados. Envíame otra fecha.",
    },
    "outside_hours": {
        "en": "That time is outside business hours ({window}). Please send a time within that range.",
        "es": "Esa hora está fuera del horario ({window}). Envíame una hora dentro de ese rango.",
    },
    # Confirmation
    "confirm_prompt": {
        "en": "To confirm booking for {when}? Reply YES to confirm or NO to cancel.",
        "es": "Para confirmar: {when}. Responde SI para confirmar o NO para cancelar.",
    },
    "confirm_yes_no": {
        "en": "Please reply YES to confirm or NO to cancel.",
        "es": "Responde SI para confirmar o NO para cancelar.",
    },
    "confirm_declined": {
        "en": "No problem. Send me another date and time (YYYY-MM-DD HH:mm).",
        "es": "Perfecto. Envíame otra fecha y hora (YYYY-MM-DD HH:mm).",
    },
    "confirm_needs_datetime": {
        "en": "Send me the date and time (YYYY-MM-DD HH:mm).",
        "es": "Envíame la fecha y hora (YYYY-MM-DD HH:mm).",
    },
    "confirm_needs_identity": {
        "en": "Before I book it, send your full name and email in ONE message (example: John Smith, john@email.com).",
        "es": "Antes de agendarlo, envíame tu nombre completo y tu email en UN solo mensaje (ej: Juan Pérez, juan@email.com).",
    },
    "booked": {
        "en": "You're all set, your appointment is confirmed. {link}",
        "es": "Perfecto, tu cita quedó confirmada. {link}",
    },
    "already_booked": {
        "en": "Already booked. {link}",
        "es": "Ya quedó agendado. {link}",
    },
    "slot_taken": {
        "en": "That time doesn't seem to be available. Could you send me another date and time? (YYYY-MM-DD HH:mm)",
        "es": "Ese horario ya no está disponible. ¿Me compartes otra fecha y hora? (YYYY-MM-DD HH:mm)",
    },
    "commit_outside_hours": {
        "en": "That time is outside business hours. Please choose a different time.",
        "es": "Ese horario está fuera del horario de atención. Elige otro horario.",
    },
    "commit_failed": {
        "en": "Something went wrong creating your booking. Please send another date and time (YYYY-MM-DD HH:mm).",
        "es": "Ocurrió un problema creando la reserva. Envíame otra fecha y hora (YYYY-MM-DD HH:mm).",
    },
    # Engine gates
    "booking_disabled": {
        "en": "Scheduling is currently disabled for this business.",
        "es": "El agendamiento está desactivado en este momento para este negocio.",
    },
    "booking_link": {
        "en": "You can book here: {link}",
        "es": "Puedes agendar aquí: {link}",
    },
    "not_connected": {
        "en": "Scheduling isn't available for this business right now.",
        "es": "El agendamiento no está disponible en este momento para este negocio.",
    },
    "courtesy": {
        "en": "You're welcome.",
        "es": "A la orden.",
    },
}


def reply(key: str, lang: Optional[str], **kwargs) -> str:
    """Render a fixed reply in the thread language (English for any other)."""
    template = REPLIES[key][_lang(lang)]
    return template.format(**kwargs).strip() if kwargs else template
