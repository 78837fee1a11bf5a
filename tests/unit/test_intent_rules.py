"""Tests for booking keyword rules."""

import pytest

from app.core.intelligence.intent.rules import (
    DEFAULT_BOOKING_TERMS,
    asks_for_hours,
    detect_daypart,
    detect_purpose,
    is_courtesy,
    is_direct_booking_request,
    is_no,
    is_yes,
    matches_booking_intent,
    normalize_text,
    wants_another_day,
    wants_more_slots,
    wants_to_cancel,
    wants_to_change_topic,
)


class TestNormalize:
    """Test text normalization."""

    def test_strips_accents_and_punctuation(self):
        assert normalize_text("¡Hola, Mañana!") == "hola manana"

    def test_keeps_time_and_email_characters(self):
        assert normalize_text("a las 5:30, ana@x.com") == "a las 5:30 ana@x.com"

    def test_none(self):
        assert normalize_text(None) == ""


class TestBookingIntent:
    """Test booking intent keywords."""

    def test_default_terms(self):
        assert matches_booking_intent("Quiero una cita", DEFAULT_BOOKING_TERMS)
        assert matches_booking_intent("can I book?", DEFAULT_BOOKING_TERMS)
        assert not matches_booking_intent("what are your prices", DEFAULT_BOOKING_TERMS)

    def test_single_word_terms_match_whole_words(self):
        assert not matches_booking_intent("bookstore hours", ["book"])

    def test_multi_word_terms(self):
        assert matches_booking_intent("quiero una clase de prueba", ["clase de prueba"])

    @pytest.mark.parametrize(
        "text",
        ["book me for tomorrow", "quiero agendar", "agendame", "necesito sacar una cita", "schedule an appointment"],
    )
    def test_direct_request(self, text):
        assert is_direct_booking_request(text)

    def test_not_direct_request(self):
        assert not is_direct_booking_request("hello")
        assert not is_direct_booking_request("what time do you open")

    def test_detect_purpose(self):
        assert detect_purpose("quiero una cita") == "cita"
        assert detect_purpose("I'd like a demo") == "demo"
        assert detect_purpose("una llamada") == "llamada"
        assert detect_purpose("hola") is None


class TestDaypart:
    """Test morning/afternoon detection."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("por la mañana", "morning"),
            ("morning works", "morning"),
            ("10am", "morning"),
            ("en la tarde", "afternoon"),
            ("3pm", "afternoon"),
            ("in the evening", "afternoon"),
            ("later", "afternoon"),
            ("whenever", None),
        ],
    )
    def test_detect_daypart(self, text, expected):
        assert detect_daypart(text) == expected


class TestFlowControl:
    """Test cancel, topic change and navigation signals."""

    @pytest.mark.parametrize("text", ["cancelar", "para", "stop", "no gracias", "olvídalo", "never mind"])
    def test_cancel(self, text):
        assert wants_to_cancel(text)

    @pytest.mark.parametrize("text", ["para las 2pm", "para mañana", "si"])
    def test_not_cancel(self, text):
        assert not wants_to_cancel(text)

    def test_change_topic(self):
        assert wants_to_change_topic("cuánto cuesta?")
        assert wants_to_change_topic("what's the price")
        assert wants_to_change_topic("where is the location")
        assert not wants_to_change_topic("mañana a las 3")

    def test_more_slots_vs_another_day(self):
        assert wants_more_slots("otras horas")
        assert wants_more_slots("show more")
        assert wants_more_slots("anything later?")
        assert not wants_more_slots("otro día")
        assert wants_another_day("otro día")
        assert wants_another_day("next day please")
        assert not wants_another_day("otras horas")

    def test_asks_for_hours(self):
        assert asks_for_hours("qué horarios tienes?")
        assert asks_for_hours("what times are available")
        assert not asks_for_hours("2")


class TestAnswers:
    """Test yes/no/courtesy answers."""

    @pytest.mark.parametrize("text", ["Sí, por favor", "ok", "dale", "yes please", "sounds good", "confirmo."])
    def test_yes(self, text):
        assert is_yes(text)

    @pytest.mark.parametrize("text", ["si pero a las 5", "maybe", "2"])
    def test_not_yes(self, text):
        assert not is_yes(text)

    def test_no(self):
        assert is_no("no gracias")
        assert is_no("nope")
        assert not is_no("no, mejor a las 5")

    def test_courtesy(self):
        assert is_courtesy("muchas gracias!")
        assert is_courtesy("thank you")
        assert not is_courtesy("gracias, y el precio?")
