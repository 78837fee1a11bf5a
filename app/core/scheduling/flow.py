"""
Booking Conversation Flow.

State machine that turns one inbound message plus the thread's booking
state into a reply and the next state:

    idle -> ask_purpose -> ask_daypart -> offer_slots -> ask_contact -> confirm
                                   \\-> ask_all -> ask_datetime -/

Every step honors two exits: a topic change hands the message back to the
outer router (handled=False) and a cancel phrase resets to idle. Slot
searches and the final commit go through injected collaborators; the flow
itself never talks to the calendar or the database.
"""

import dataclasses
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from app.config import settings
from app.core.intelligence.intent.rules import (
    asks_for_hours,
    detect_daypart,
    detect_purpose,
    is_no,
    is_yes,
    wants_another_day,
    wants_more_slots,
    wants_to_cancel,
    wants_to_change_topic,
)
from app.core.intelligence.slots.extractor import (
    extract_date_only_token,
    extract_datetime_token,
    extract_requested_datetime,
    extract_time_constraint,
    extract_time_only_token,
    has_explicit_meridiem,
    parse_all_in_one,
    parse_email,
    parse_full_name,
    parse_name_email_only,
    parse_phone,
    parse_slot_choice,
)
from app.core.scheduling.availability import is_past_slot, utcnow
from app.core.scheduling.commit import (
    BookingCommitter,
    CommitOutcome,
    CommitRequest,
    CommitStatus,
    get_booking_committer,
)
from app.core.scheduling.formatting import (
    build_ask_all_message,
    format_biz_window,
    format_day_label,
    format_slot_human,
    format_slot_with_weekday,
    render_slots_message,
    reply,
)
from app.core.scheduling.intervals import Interval, Slot
from app.core.scheduling.search import (
    SlotSearch,
    filter_by_constraint,
    filter_by_daypart,
    filter_near_time,
    get_slot_search,
)
from app.core.scheduling.state import BookingState, BookingStep, ConversationContext, StepResult
from app.core.scheduling.timeutils import PastSlotError, is_within_business_hours, parse_datetime_explicit
from app.core.scheduling.types import BookingConfig, SearchResult, TimeConstraint

logger = logging.getLogger(__name__)

# Channels whose contact id is not a phone number
PHONE_REQUIRED_CHANNELS = frozenset({"facebook", "instagram"})


@dataclass
class BookingSignals:
    """Per-message inputs computed by the caller."""

    wants_booking: bool = False
    purpose: Optional[str] = None
    lang: Optional[str] = None


@dataclass
class _Turn:
    """One message being processed."""

    text: str
    state: BookingState
    config: BookingConfig
    channel: str
    contact: str
    signals: BookingSignals
    now: datetime

    @property
    def tz(self) -> ZoneInfo:
        return self.config.tz

    @property
    def lang(self) -> str:
        return self.state.lang or settings.booking_default_language

    @property
    def today(self) -> date:
        return self.now.astimezone(self.tz).date()

    @property
    def requires_phone(self) -> bool:
        return self.channel in PHONE_REQUIRED_CHANNELS


class BookingFlow:
    """
    Booking conversation state machine.

    One ``step`` call per inbound message. The caller loads the thread
    context, runs the step and persists ``StepResult.patch``.
    """

    def __init__(
        self,
        slot_search: Optional[SlotSearch] = None,
        committer: Optional[BookingCommitter] = None,
    ):
        """Initialize flow.

        Args:
            slot_search: Slot search strategies (uses singleton if not provided)
            committer: Commit protocol (uses singleton if not provided)
        """
        self._slot_search = slot_search
        self._committer = committer
        self._handlers: dict[BookingStep, Callable[[_Turn], Awaitable[StepResult]]] = {
            BookingStep.IDLE: self._start,
            BookingStep.ASK_PURPOSE: self._ask_purpose,
            BookingStep.ASK_DAYPART: self._ask_daypart,
            BookingStep.OFFER_SLOTS: self._offer_slots,
            BookingStep.ASK_CONTACT: self._ask_contact,
            BookingStep.ASK_ALL: self._ask_all,
            BookingStep.ASK_DATETIME: self._ask_datetime,
            BookingStep.CONFIRM: self._confirm,
        }

    def _get_slot_search(self) -> SlotSearch:
        if self._slot_search is None:
            self._slot_search = get_slot_search()
        return self._slot_search

    def _get_committer(self) -> BookingCommitter:
        if self._committer is None:
            self._committer = get_booking_committer()
        return self._committer

    async def step(
        self,
        context: ConversationContext,
        text: str,
        config: BookingConfig,
        channel: str,
        contact: str,
        signals: Optional[BookingSignals] = None,
        now: Optional[datetime] = None,
    ) -> StepResult:
        """
        Process one message.

        Args:
            context: Thread context (booking state + post-booking metadata)
            text: Inbound message
            config: Tenant booking configuration
            channel: Conversation channel
            contact: Channel contact id (phone for SMS/WhatsApp)
            signals: Booking intent, purpose and language for this message
            now: Current instant

        Returns:
            StepResult (handled=False when the message is not for the booking flow)
        """
        signals = signals or BookingSignals()
        state = context.booking.hydrated(config.time_zone, signals.lang)

        turn = _Turn(
            text=str(text or "").strip(),
            state=state,
            config=config,
            channel=channel,
            contact=contact,
            signals=signals,
            now=now or utcnow(),
        )

        result = await self._handlers[state.step](turn)
        logger.debug(
            f"Booking step {state.step.value} -> "
            f"{result.state.step.value if result.state else '-'} handled={result.handled}"
        )
        return result

    # === Result helpers ===

    def _result(self, turn: _Turn, text: str, state: BookingState, **patch) -> StepResult:
        return StepResult(
            handled=True,
            reply=text,
            state=state,
            context_patch={"booking_last_touch_at": turn.now, **patch},
        )

    def _say(self, turn: _Turn, key: str, state: BookingState, **kwargs) -> StepResult:
        return self._result(turn, reply(key, turn.lang, **kwargs), state)

    def _exits(self, turn: _Turn, cancel_key: str = "cancel") -> Optional[StepResult]:
        """Topic change hands back to the router; cancel resets to idle."""
        if wants_to_change_topic(turn.text):
            return StepResult(handled=False, state=turn.state.reset(keep_context=True))
        if wants_to_cancel(turn.text):
            return self._say(turn, cancel_key, turn.state.reset())
        return None

    def _offer(
        self,
        turn: _Turn,
        slots: list[Slot],
        style: str = "default",
        ask: str = "anything",
        **changes,
    ) -> StepResult:
        """Render an offer and remember exactly the slots shown."""
        state = turn.state.evolve(
            step=BookingStep.OFFER_SLOTS,
            slots=tuple(slots),
            last_offered_date=slots[0].local_date(turn.tz),
            **changes,
        )
        text = render_slots_message(list(slots), turn.tz, turn.lang, style=style, ask=ask)
        return self._result(turn, text, state)

    def _to_confirm(
        self,
        turn: _Turn,
        start: datetime,
        end: datetime,
        key: str = "confirm_prompt",
        **changes,
    ) -> StepResult:
        state = turn.state.evolve(step=BookingStep.CONFIRM, start_time=start, end_time=end, **changes)
        return self._say(turn, key, state, when=format_slot_with_weekday(start, turn.tz, turn.lang))

    def _unverified(self, turn: _Turn, state: Optional[BookingState] = None) -> StepResult:
        return self._say(turn, "availability_unverified", state or turn.state)

    def _identity_complete(self, turn: _Turn, state: BookingState) -> bool:
        if not (state.name and parse_full_name(state.name) and state.email and parse_email(state.email)):
            return False
        return bool(state.phone) or not turn.requires_phone

    def _validate_token(
        self,
        turn: _Turn,
        token: str,
        error_state: BookingState,
        unreadable_key: str = "unreadable_datetime",
        past_key: str = "past_datetime",
        past_state: Optional[BookingState] = None,
    ) -> tuple[Optional[Interval], Optional[StepResult]]:
        """Parse a "YYYY-MM-DD HH:mm" token and check lead time and business hours."""
        config = turn.config
        try:
            interval = parse_datetime_explicit(
                token, turn.tz, config.duration_min, config.min_lead_minutes, now=turn.now
            )
        except PastSlotError:
            return None, self._say(turn, past_key, past_state or error_state)

        if interval is None:
            return None, self._say(turn, unreadable_key, error_state)

        check = is_within_business_hours(config.hours, interval.start, interval.end, turn.tz)
        if not check:
            if check.reason == "closed":
                return None, self._say(turn, "closed_day", error_state)
            if check.reason == "outside" and check.window:
                window = format_biz_window(check.window, turn.tz, turn.lang)
                return None, self._say(turn, "outside_hours", error_state, window=window)
            return None, self._say(turn, unreadable_key, error_state)

        return interval, None

    # === Shared searches ===

    async def _offer_date(self, turn: _Turn, day: date, error_state: BookingState) -> StepResult:
        """Offer a short list for a customer who named only a date."""
        if day < turn.today:
            return self._say(turn, "past_date", error_state)

        if turn.config.hours is None:
            label = format_day_label(datetime.combine(day, time(12, 0), tzinfo=turn.tz), turn.tz, turn.lang)
            state = turn.state.evolve(step=BookingStep.ASK_DATETIME, date_only=day)
            return self._say(turn, "ask_time_for_date", state, day=label)

        result = await self._get_slot_search().date_only_search(turn.config, day, now=turn.now)
        slots = self._daypart_filtered(turn, result)
        if slots:
            return self._offer(turn, slots, style="sameDay", date_only=day, anchor_time=None)
        if result.degraded:
            return self._unverified(turn, error_state)
        return self._say(turn, "no_slots_for_date", turn.state.evolve(step=BookingStep.ASK_DATETIME, date_only=None))

    async def _offer_requested(self, turn: _Turn, requested: datetime) -> StepResult:
        """Handle an explicit date and time named in one message."""
        config = turn.config
        if is_past_slot(requested, config.min_lead_minutes, now=turn.now):
            return self._say(turn, "past_datetime", turn.state.evolve(step=BookingStep.ASK_DATETIME))

        day = requested.astimezone(turn.tz).date()
        if config.hours is None:
            # No grid to search: verify the requested span itself
            result = await self._get_slot_search().exact_search(config, requested, now=turn.now)
            retry = turn.state.evolve(step=BookingStep.ASK_DATETIME, date_only=day)
            if result.degraded:
                return self._unverified(turn, retry)
            if not result.found:
                return self._say(turn, "slot_taken", retry)
            slot = result.slots[0]
            return self._to_confirm(turn, slot.start, slot.end, date_only=day)

        search = self._get_slot_search()
        result = await search.window_search(config, requested, now=turn.now)
        exact = next((s for s in result.slots if s.start == requested), None)
        if exact:
            return self._to_confirm(
                turn, exact.start, exact.end, key="exact_slot_found", date_only=day, last_offered_date=day
            )
        anchor = requested.astimezone(turn.tz).time()
        if result.found:
            return self._offer(turn, result.slots, style="closest", date_only=day, anchor_time=anchor)

        # Nothing near the requested time that day: same time on the next open day
        following = await search.next_available_day(
            config, day, anchor=anchor, daypart=turn.state.daypart, now=turn.now
        )
        if following.found:
            return self._offer(
                turn, following.slots, style="sameDay", date_only=following.day, anchor_time=anchor
            )
        fallback = turn.state.evolve(step=BookingStep.ASK_DAYPART, anchor_time=anchor)
        if result.degraded or following.degraded:
            return self._unverified(turn, fallback)
        return self._say(turn, "no_slots_near_request", fallback)

    async def _scan_daypart(self, turn: _Turn, daypart: str) -> StepResult:
        """Offer morning or afternoon slots over the next days."""
        if turn.config.hours is None:
            state = turn.state.evolve(step=BookingStep.ASK_ALL, daypart=daypart)
            return self._result(turn, build_ask_all_message(turn.lang), state)

        result = await self._get_slot_search().daypart_scan(turn.config, daypart, now=turn.now)
        if result.found:
            return self._offer(turn, result.slots, style="daypart", daypart=daypart, anchor_time=None)
        state = turn.state.evolve(step=BookingStep.ASK_DAYPART, daypart=daypart)
        if result.degraded:
            return self._unverified(turn, state)
        return self._say(turn, "no_daypart_slots", state)

    def _daypart_filtered(self, turn: _Turn, result: SearchResult) -> list[Slot]:
        daypart = turn.state.daypart
        if not daypart:
            return result.slots
        return filter_by_daypart(result.slots, turn.tz, daypart) or result.slots

    # === Steps ===

    async def _start(self, turn: _Turn) -> StepResult:
        """Idle: enter the flow on a booking intent."""
        if not turn.signals.wants_booking:
            return StepResult(handled=False, state=turn.state)

        text = turn.text
        purpose = turn.signals.purpose or detect_purpose(text) or turn.state.purpose
        daypart = detect_daypart(text)
        turn.state = turn.state.evolve(purpose=purpose, daypart=daypart, date_only=None)

        requested = extract_requested_datetime(text, turn.tz, today=turn.today)
        if requested:
            return await self._offer_requested(turn, requested)

        day = _date_besides_daypart(turn, daypart)
        if day:
            return await self._offer_date(turn, day, turn.state.evolve(step=BookingStep.ASK_DATETIME))

        if daypart:
            return await self._scan_daypart(turn, daypart)

        if not purpose:
            return self._say(turn, "ask_purpose", turn.state.evolve(step=BookingStep.ASK_PURPOSE))

        return self._say(turn, "ask_daypart", turn.state.evolve(step=BookingStep.ASK_DAYPART))

    async def _ask_purpose(self, turn: _Turn) -> StepResult:
        exit_result = self._exits(turn)
        if exit_result:
            return exit_result

        purpose = detect_purpose(turn.text)
        if not purpose:
            return self._say(turn, "ask_purpose_again", turn.state)

        turn.state = turn.state.evolve(step=BookingStep.ASK_DAYPART, purpose=purpose)
        daypart = detect_daypart(turn.text) or turn.state.daypart
        if daypart:
            return await self._scan_daypart(turn, daypart)
        return self._say(turn, "ask_daypart", turn.state)

    async def _ask_daypart(self, turn: _Turn) -> StepResult:
        exit_result = self._exits(turn, cancel_key="cancel_soft")
        if exit_result:
            return exit_result

        text = turn.text
        requested = extract_requested_datetime(text, turn.tz, today=turn.today)
        if requested:
            return await self._offer_requested(turn, requested)

        daypart = detect_daypart(text)
        day = _date_besides_daypart(turn, daypart)
        if day:
            if daypart:
                turn.state = turn.state.evolve(daypart=daypart)
            return await self._offer_date(turn, day, turn.state)

        if not daypart:
            return self._say(turn, "ask_daypart_again", turn.state)
        return await self._scan_daypart(turn, daypart)

    async def _offer_slots(self, turn: _Turn) -> StepResult:
        """Slots are on screen: pick, refine, or ask for more."""
        state = turn.state
        text = turn.text
        config = turn.config
        slots = sorted(state.slots, key=lambda s: s.start)

        if not slots:
            return self._say(turn, "no_saved_slots", state.evolve(step=BookingStep.ASK_DATETIME, date_only=None))

        ctx_date = state.context_date
        constraint = extract_time_constraint(text)
        explicit_time = extract_time_only_token(text)

        if asks_for_hours(text) and not explicit_time and not constraint:
            return self._offer(turn, slots)

        if wants_another_day(text):
            if config.hours is not None and ctx_date:
                result = await self._get_slot_search().next_available_day(
                    config, ctx_date, anchor=state.anchor_time, daypart=state.daypart, now=turn.now
                )
                if result.found:
                    return self._offer(turn, result.slots, style="sameDay", date_only=result.day)
                if result.degraded:
                    return self._unverified(turn)
            return self._say(turn, "no_next_day", state)

        exit_result = self._exits(turn, cancel_key="cancel_soft")
        if exit_result:
            return exit_result

        if constraint:
            return await self._apply_constraint(turn, slots, constraint, ctx_date)

        if explicit_time:
            return await self._explicit_hour(turn, explicit_time, ctx_date)

        choice = parse_slot_choice(text, len(slots))
        if choice:
            return self._pick(turn, slots[choice - 1])

        if wants_more_slots(text):
            return await self._more_slots(turn, slots, ctx_date)

        return self._say(turn, "choose_number", state, n=len(slots))

    def _pick(self, turn: _Turn, slot: Slot) -> StepResult:
        """Customer chose an offered slot."""
        state = turn.state
        when = format_slot_human(slot.start, turn.tz, turn.lang)

        if self._identity_complete(turn, state):
            return self._to_confirm(turn, slot.start, slot.end)

        picked = state.evolve(step=BookingStep.ASK_CONTACT, picked_start=slot.start, picked_end=slot.end)
        if not state.name:
            return self._say(turn, "picked_ask_name", picked, when=when)
        key = "picked_ask_email_phone" if turn.requires_phone else "picked_ask_email"
        return self._say(turn, key, picked, when=when)

    async def _explicit_hour(self, turn: _Turn, at: time, ctx_date: Optional[date]) -> StepResult:
        """Customer named a time of day while slots are on screen."""
        state = turn.state
        config = turn.config
        meridiem = has_explicit_meridiem(turn.text)

        if not meridiem and state.daypart == "afternoon" and 1 <= at.hour <= 11:
            at = at.replace(hour=at.hour + 12)

        if config.hours is None:
            return self._say(turn, "ask_date_for_time", state.evolve(step=BookingStep.ASK_DATETIME))

        day = extract_date_only_token(turn.text, turn.tz, today=turn.today) or ctx_date
        if day is None:
            return self._say(turn, "ask_which_date", state)

        result = await self._get_slot_search().day_search(config, day, now=turn.now, limit=50)
        day_slots = self._daypart_filtered(turn, result)

        candidates = [at]
        if not meridiem and not state.daypart and 1 <= at.hour <= 11:
            candidates.append(at.replace(hour=at.hour + 12))

        for candidate in candidates:
            exact = next(
                (s for s in day_slots if s.start.astimezone(turn.tz).time() == candidate), None
            )
            if exact:
                return self._to_confirm(
                    turn, exact.start, exact.end, key="exact_slot_found", date_only=day, last_offered_date=day
                )

        if result.degraded and not day_slots:
            return self._unverified(turn)

        # "at 5" means whichever reading falls inside business hours
        business = config.hours.window_for(day, turn.tz)
        target = next(
            (
                c for c in candidates
                if business and business.start <= datetime.combine(day, c, tzinfo=turn.tz) < business.end
            ),
            at,
        )
        near = filter_near_time(
            day_slots,
            turn.tz,
            target,
            window_minutes=settings.booking_near_time_window_minutes,
            limit=settings.booking_max_slots_offered,
        )
        if near:
            return self._offer(turn, near, style="closest", date_only=day, anchor_time=target)

        return self._say(turn, "no_slots_for_date", state.evolve(step=BookingStep.ASK_DATETIME, date_only=None))

    async def _apply_constraint(
        self,
        turn: _Turn,
        slots: list[Slot],
        constraint: TimeConstraint,
        ctx_date: Optional[date],
    ) -> StepResult:
        """Soft time preference over the offered list, widening to a window search."""
        state = turn.state
        limit = settings.booking_max_slots_offered

        if constraint.at is None:
            return self._offer(turn, filter_by_constraint(slots, turn.tz, constraint, limit=limit), style="closest")

        if (
            state.daypart == "afternoon"
            and not has_explicit_meridiem(turn.text)
            and 1 <= constraint.at.hour <= 11
        ):
            constraint = dataclasses.replace(constraint, at=constraint.at.replace(hour=constraint.at.hour + 12))

        day = ctx_date or slots[0].local_date(turn.tz)
        target = datetime.combine(day, constraint.at, tzinfo=turn.tz)
        matched = _matching(slots, constraint, target)
        if matched:
            return self._offer(turn, matched[:limit], style="closest")

        if turn.config.hours is not None:
            result = await self._get_slot_search().window_search(turn.config, target, now=turn.now, limit=50)
            found = _matching(self._daypart_filtered(turn, result), constraint, target)
            if found:
                return self._offer(turn, found[:limit], style="closest", date_only=day)
            if result.degraded:
                return self._unverified(turn)

        return self._say(turn, "no_slots_near_time", state)

    async def _more_slots(self, turn: _Turn, slots: list[Slot], ctx_date: Optional[date]) -> StepResult:
        """Later times on the same day, then the next open day."""
        config = turn.config
        if config.hours is None or ctx_date is None:
            return self._say(turn, "no_next_day", turn.state)

        search = self._get_slot_search()
        result = await search.day_search(config, ctx_date, now=turn.now, limit=50, after=slots[-1].start)
        more = self._daypart_filtered(turn, result)[: settings.booking_max_slots_offered]
        if more:
            return self._offer(turn, more, style="more")

        following = await search.next_available_day(
            config, ctx_date, anchor=turn.state.anchor_time, daypart=turn.state.daypart, now=turn.now
        )
        if following.found:
            return self._offer(turn, following.slots, style="sameDay", date_only=following.day)
        if result.degraded or following.degraded:
            return self._unverified(turn)
        return self._say(turn, "no_next_day", turn.state)

    async def _ask_contact(self, turn: _Turn) -> StepResult:
        """Slot picked: collect name, email (and phone on social channels)."""
        exit_result = self._exits(turn, cancel_key="cancel_soft")
        if exit_result:
            return exit_result

        state = turn.state
        if not state.picked_start or not state.picked_end:
            return StepResult(handled=False, state=state.reset(keep_context=True))

        info = parse_name_email_only(turn.text)
        state = state.evolve(
            name=info.name or state.name,
            email=info.email or parse_email(turn.text) or state.email,
            phone=info.phone or state.phone,
        )
        turn.state = state

        if not state.name:
            return self._say(turn, "missing_name", state)
        if not state.email:
            key = "missing_email_phone" if turn.requires_phone and not state.phone else "missing_email"
            return self._say(turn, key, state)
        if turn.requires_phone and not state.phone:
            return self._say(turn, "missing_phone", state)

        return self._to_confirm(turn, state.picked_start, state.picked_end)

    async def _ask_all(self, turn: _Turn) -> StepResult:
        """Name, email and date-time collected in as few messages as possible."""
        exit_result = self._exits(turn)
        if exit_result:
            return exit_result

        text = turn.text
        parsed = parse_all_in_one(text)
        contact = parse_name_email_only(text)
        state = turn.state.evolve(
            name=parsed.name or contact.name or turn.state.name,
            email=parsed.email or turn.state.email,
            phone=(parse_phone(text) if turn.requires_phone else None) or turn.state.phone,
        )
        turn.state = state

        token = parsed.datetime_token or extract_datetime_token(text)
        if token:
            interval, error = self._validate_token(
                turn, token, state, past_state=state.evolve(step=BookingStep.ASK_DATETIME)
            )
            if error:
                return error
            if self._identity_complete(turn, state):
                return self._to_confirm(turn, interval.start, interval.end)
            turn.state = state = state.evolve(start_time=interval.start, end_time=interval.end)
            return self._ask_missing(turn, state)

        day = extract_date_only_token(text, turn.tz, today=turn.today)
        if day and state.name and state.email:
            return await self._offer_date(turn, day, state.evolve(step=BookingStep.ASK_DATETIME))

        if self._identity_complete(turn, state) and state.start_time and state.end_time:
            return self._to_confirm(turn, state.start_time, state.end_time)

        return self._ask_missing(turn, state)

    def _ask_missing(self, turn: _Turn, state: BookingState) -> StepResult:
        """Ask only for what ask_all still lacks."""
        if not state.name:
            return self._say(turn, "missing_name", state)
        if not state.email:
            return self._say(turn, "missing_email", state)
        if turn.requires_phone and not state.phone:
            return self._say(turn, "missing_phone", state)
        return self._say(turn, "missing_datetime", state.evolve(step=BookingStep.ASK_DATETIME))

    async def _ask_datetime(self, turn: _Turn) -> StepResult:
        """Free date/time entry."""
        exit_result = self._exits(turn)
        if exit_result:
            return exit_result

        text = turn.text
        state = turn.state
        token = extract_datetime_token(text)
        time_only = False

        if not token:
            requested = extract_requested_datetime(text, turn.tz, today=turn.today)
            at = extract_time_only_token(text)
            day = extract_date_only_token(text, turn.tz, today=turn.today)
            ctx_date = state.date_only or state.last_offered_date

            if requested:
                token = requested.strftime("%Y-%m-%d %H:%M")
            elif at and ctx_date:
                token = f"{ctx_date.isoformat()} {at.strftime('%H:%M')}"
                time_only = True
            elif at:
                return self._say(turn, "ask_date_first", state)
            elif day:
                return await self._offer_date(turn, day, state)
            else:
                return self._say(turn, "unreadable_datetime", state)

        interval, error = self._validate_token(
            turn,
            token,
            state,
            unreadable_key="unreadable_time" if time_only else "unreadable_datetime",
            past_key="past_time" if time_only else "past_datetime",
        )
        if error:
            return error

        return self._to_confirm(turn, interval.start, interval.end, date_only=None)

    async def _confirm(self, turn: _Turn) -> StepResult:
        """Yes commits, no goes back to date/time entry."""
        state = turn.state
        text = turn.text

        if wants_to_cancel(text):
            return self._say(turn, "cancel", state.reset())

        yes, no = is_yes(text), is_no(text)
        if not yes and not no:
            return self._say(turn, "confirm_yes_no", state)

        if no:
            return self._say(
                turn, "confirm_declined", state.evolve(step=BookingStep.ASK_DATETIME, date_only=None)
            )

        if not state.start_time or not state.end_time:
            return self._say(turn, "confirm_needs_datetime", state.evolve(step=BookingStep.ASK_DATETIME))

        if not self._identity_complete(turn, state):
            return self._say(turn, "confirm_needs_identity", state.evolve(step=BookingStep.ASK_ALL))

        request = CommitRequest(
            tenant_id=turn.config.tenant_id,
            channel=turn.channel,
            name=state.name,
            email=state.email,
            phone=state.phone or turn.contact,
            start=state.start_time,
            end=state.end_time,
        )
        outcome = await self._get_committer().commit(request, turn.config, now=turn.now)
        logger.info(
            f"Booking commit tenant={turn.config.tenant_id} status={outcome.status.value} "
            f"appointment={outcome.appointment_id}"
        )
        return self._after_commit(turn, outcome)

    def _after_commit(self, turn: _Turn, outcome: CommitOutcome) -> StepResult:
        state = turn.state
        status = outcome.status

        if outcome.ok:
            key = "booked" if status == CommitStatus.CONFIRMED else "already_booked"
            return self._result(
                turn,
                reply(key, turn.lang, link=outcome.event_link or ""),
                state.reset(),
                last_appointment_id=outcome.appointment_id,
                booking_completed=True,
                booking_completed_at=turn.now,
                booking_last_done_at=turn.now,
                booking_last_event_link=outcome.event_link,
            )

        if status in (CommitStatus.UNVERIFIED, CommitStatus.SLOT_BUSY) and outcome.alternatives:
            day = outcome.alternatives[0].local_date(turn.tz)
            return self._offer(turn, outcome.alternatives, style="closest", date_only=day)

        if status == CommitStatus.UNVERIFIED:
            return self._unverified(turn)

        retry = state.evolve(step=BookingStep.ASK_DATETIME, date_only=None)
        if status == CommitStatus.SLOT_BUSY:
            return self._say(turn, "slot_taken", retry)
        if status == CommitStatus.PAST_SLOT:
            return self._say(turn, "past_datetime", retry)
        if status == CommitStatus.OUTSIDE_BUSINESS_HOURS:
            return self._say(turn, "commit_outside_hours", retry)
        return self._say(turn, "commit_failed", retry)


_MANANA_RE = re.compile(r"ma[nñ]ana", re.IGNORECASE)


def _date_besides_daypart(turn: _Turn, daypart: Optional[str]) -> Optional[date]:
    """Date mentioned in the message, not counting a lone "mañana" read as morning."""
    text = turn.text
    if daypart == "morning" and len(_MANANA_RE.findall(text)) == 1:
        text = _MANANA_RE.sub(" ", text)
    return extract_date_only_token(text, turn.tz, today=turn.today)


# Tolerance for "around 4" style preferences
AROUND_TOLERANCE = timedelta(minutes=150)


def _matching(slots: list[Slot], constraint: TimeConstraint, target: datetime) -> list[Slot]:
    """Slots strictly meeting an after/before/around preference."""
    if constraint.kind == "after":
        return sorted((s for s in slots if s.start >= target), key=lambda s: s.start)
    if constraint.kind == "before":
        return sorted((s for s in slots if s.start <= target), key=lambda s: s.start)
    near = [s for s in slots if abs(s.start - target) <= AROUND_TOLERANCE]
    return sorted(near, key=lambda s: (abs(s.start - target), s.start))


# Singleton
_flow: Optional[BookingFlow] = None


def get_booking_flow() -> BookingFlow:
    """Get singleton BookingFlow."""
    global _flow
    if _flow is None:
        _flow = BookingFlow()
    return _flow
