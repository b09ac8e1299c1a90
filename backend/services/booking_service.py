"""Availability lookup and conflict-checked booking for phone callers.

``BookingService`` is the boundary the voice assistant talks to: both public
methods always return a structured result and never raise, so the assistant
always has something to say. Domain failures are ``SchedulingError``
subclasses and are collapsed to caller-safe messages here.
"""

import logging
from collections.abc import Callable
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core import config
from backend.database import utc_now
from backend.repositories import account_repository, appointment_repository
from backend.scheduling import natural_dates
from backend.scheduling.errors import (
    CALLBACK_FALLBACK,
    CalendarUnavailable,
    IncompleteBookingRequest,
    NoActiveAccount,
    PartialCommit,
    SchedulingError,
    SlotNoLongerAvailable,
)
from backend.scheduling.slots import (
    MAX_PRESENTED_SLOTS,
    BusinessHours,
    TimeSlot,
    apply_if_nonempty,
    format_display_full,
    format_slot_for_voice,
    generate_slots,
    matches_date,
    matches_time_of_day,
    overlaps,
)
from backend.services.calendar_gateway import CalendarGateway

logger = logging.getLogger(__name__)

MAX_LOOKAHEAD_DAYS = 30
REVALIDATION_PADDING = timedelta(minutes=1)
INVALID_START_MESSAGE = 'Invalid appointment time. Please try again.'


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SlotOption(CamelModel):
    start_time: str
    end_time: str
    display_date: str
    display_time: str
    display_full: str
    voice_option: str


class AvailabilityResult(CamelModel):
    success: bool
    slots: list[SlotOption] = []
    total_available: int | None = None
    message: str | None = None
    error: str | None = None


class BookedAppointment(CamelModel):
    id: int
    event_id: str
    start_time: str
    end_time: str
    display_time: str


class BookingResult(CamelModel):
    success: bool
    appointment: BookedAppointment | None = None
    message: str | None = None
    error: str | None = None
    should_retry: bool | None = None


class BookingService:
    def __init__(
        self,
        db: Session,
        gateway: CalendarGateway | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.db = db
        self._gateway = gateway
        self.clock = clock or utc_now
        self.timezone_name = config.BUSINESS_TIMEZONE
        self.zone = ZoneInfo(config.BUSINESS_TIMEZONE)
        self.duration = timedelta(minutes=config.APPOINTMENT_DURATION_MINUTES)
        self.business_hours = BusinessHours(
            open_time=config.BUSINESS_HOURS_START,
            close_time=config.BUSINESS_HOURS_END,
        )
        self.business_days = config.BUSINESS_DAYS

    @property
    def gateway(self) -> CalendarGateway:
        if self._gateway is None:
            self._gateway = CalendarGateway(self.db)
        return self._gateway

    def get_available_slots(
        self,
        preferred_date: str | None = None,
        time_of_day: str | None = 'any',
        days_ahead: int | None = None,
    ) -> AvailabilityResult:
        try:
            return self._find_slots(preferred_date, time_of_day or 'any', days_ahead)
        except SchedulingError as exc:
            logger.warning('Availability lookup failed: %s', exc)
            return AvailabilityResult(success=False, slots=[], error=exc.caller_message)
        except Exception:
            logger.exception('Unexpected failure while looking up availability')
            return AvailabilityResult(success=False, slots=[], error=CalendarUnavailable.caller_message)

    def book_appointment(
        self,
        start_time: str | datetime | None,
        customer_name: str | None,
        phone_number: str | None,
        address: str | None,
        issue: str | None,
        email: str | None = None,
        call_id: str | None = None,
    ) -> BookingResult:
        try:
            return self._book(start_time, customer_name, phone_number, address, issue, email, call_id)
        except PartialCommit as exc:
            return BookingResult(success=False, error=exc.caller_message, should_retry=False)
        except SchedulingError as exc:
            logger.warning('Booking failed for call %s: %s', call_id, exc)
            return BookingResult(
                success=False,
                error=exc.caller_message,
                should_retry=True if exc.should_retry else None,
            )
        except Exception:
            logger.exception('Unexpected failure while booking for call %s', call_id)
            return BookingResult(
                success=False,
                error=f'I had trouble booking that appointment. {CALLBACK_FALLBACK}',
            )

    def _find_slots(self, preferred_date: str | None, time_of_day: str, days_ahead: int | None) -> AvailabilityResult:
        account = account_repository.get_active_account(self.db)
        if account is None:
            raise NoActiveAccount('No active calendar account; skipping availability lookup')

        lookahead = min(max(days_ahead or config.DEFAULT_DAYS_AHEAD, 1), MAX_LOOKAHEAD_DAYS)
        now = self.clock()
        today = now.astimezone(self.zone).date()
        last_date = today + timedelta(days=lookahead)

        target_date = natural_dates.resolve(preferred_date, now, self.timezone_name)
        if target_date is not None and last_date < target_date <= today + timedelta(days=MAX_LOOKAHEAD_DAYS):
            last_date = target_date

        window_end = self._start_of_day(last_date + timedelta(days=1))
        busy_periods = self.gateway.get_busy_periods(account, now, window_end)

        slots = generate_slots(
            today,
            last_date,
            self.business_hours,
            self.business_days,
            self.duration,
            self.timezone_name,
            busy_periods,
            now=now,
        )

        if target_date is not None:
            slots, date_applied = apply_if_nonempty(slots, matches_date(target_date))
            if not date_applied:
                logger.info('No open slots on %s; offering other days', target_date.isoformat())

        if time_of_day != 'any':
            slots, _ = apply_if_nonempty(slots, matches_time_of_day(time_of_day))

        presented = slots[:MAX_PRESENTED_SLOTS]
        options = [self._slot_option(slot, index) for index, slot in enumerate(presented, start=1)]

        logger.info(
            'Generated available slots: total=%d returned=%d preferred_date=%s time_of_day=%s',
            len(slots),
            len(presented),
            preferred_date,
            time_of_day,
        )

        if options:
            message = (
                f'I have {len(options)} available time slots. '
                + '. '.join(option.voice_option for option in options)
            )
        else:
            message = (
                "I apologize, but I don't see any available appointments "
                f'in the next {lookahead} days. Would you like me to have someone call you back to schedule?'
            )

        return AvailabilityResult(success=True, slots=options, total_available=len(slots), message=message)

    def _book(
        self,
        start_time: str | datetime | None,
        customer_name: str | None,
        phone_number: str | None,
        address: str | None,
        issue: str | None,
        email: str | None,
        call_id: str | None,
    ) -> BookingResult:
        required = {
            'startTime': start_time,
            'customerName': customer_name,
            'phoneNumber': phone_number,
            'address': address,
            'issue': issue,
        }
        missing = [name for name, value in required.items() if not _has_value(value)]
        if missing:
            raise IncompleteBookingRequest(missing)

        start = self._parse_start(start_time)
        end = (start.astimezone(timezone.utc) + self.duration).astimezone(self.zone)
        self._check_business_window(start, end)

        account = account_repository.get_active_account(self.db)
        if account is None:
            raise NoActiveAccount('No active calendar account; refusing to book')

        if start < self.clock():
            raise SlotNoLongerAvailable(f'Requested start {start.isoformat()} is in the past')

        self._ensure_slot_free(account, start, end)

        customer_name = customer_name.strip()
        email = email.strip() if email and email.strip() else None
        event_id = self.gateway.create_event(
            account,
            summary=f'Service Call - {customer_name}',
            description=_event_description(customer_name, phone_number, email, address, issue),
            start=start,
            end=end,
            location=address,
            attendee_email=email,
        )

        try:
            appointment = appointment_repository.create_appointment(
                self.db,
                external_event_id=event_id,
                caller_name=customer_name,
                phone_number=phone_number.strip(),
                email=email,
                service_address=address.strip(),
                issue_description=issue.strip(),
                start_time=start,
                end_time=end,
                account_email=account.email,
                call_id=call_id,
            )
        except (SQLAlchemyError, ValueError) as exc:
            logger.exception(
                'PartialCommit: calendar event %s exists on %s but the appointment was not saved '
                '(call=%s caller=%s phone=%s start=%s end=%s); reconcile manually',
                event_id,
                account.email,
                call_id,
                customer_name,
                phone_number,
                start.isoformat(),
                end.isoformat(),
            )
            raise PartialCommit(event_id, account.email) from exc

        display = format_display_full(start)
        logger.info(
            'Appointment booked: id=%s event=%s call=%s start=%s',
            appointment.id,
            event_id,
            call_id,
            start.isoformat(),
        )

        return BookingResult(
            success=True,
            appointment=BookedAppointment(
                id=appointment.id,
                event_id=event_id,
                start_time=start.isoformat(),
                end_time=end.isoformat(),
                display_time=display,
            ),
            message=(
                f'Your appointment is confirmed for {display}. '
                "You'll receive a confirmation and reminder before your appointment."
            ),
        )

    def _ensure_slot_free(self, account, start: datetime, end: datetime) -> None:
        """Re-check the chosen interval right before committing.

        This narrows the race with concurrent bookings but cannot close it;
        the provider offers no conditional insert.
        """
        busy_periods = self.gateway.get_busy_periods(
            account,
            start.astimezone(timezone.utc) - REVALIDATION_PADDING,
            end.astimezone(timezone.utc) + REVALIDATION_PADDING,
        )
        if any(overlaps(start, end, period) for period in busy_periods):
            raise SlotNoLongerAvailable(f'{start.isoformat()} is now busy on {account.email}')

        existing = appointment_repository.find_overlapping_appointment(self.db, account.email, start, end)
        if existing is not None:
            raise SlotNoLongerAvailable(
                f'{start.isoformat()} overlaps appointment {existing.id} on {account.email}'
            )

    def _parse_start(self, start_time: str | datetime) -> datetime:
        if isinstance(start_time, datetime):
            parsed = start_time
        else:
            raw = start_time.strip()
            if raw.endswith('Z'):
                raw = raw[:-1] + '+00:00'
            try:
                parsed = datetime.fromisoformat(raw)
            except ValueError as exc:
                raise IncompleteBookingRequest(['startTime'], caller_message=INVALID_START_MESSAGE) from exc

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=self.zone)
        return parsed.astimezone(self.zone)

    def _check_business_window(self, start: datetime, end: datetime) -> None:
        local_day = start.date()
        day_open = datetime.combine(local_day, self.business_hours.open_time, tzinfo=self.zone)
        day_close = datetime.combine(local_day, self.business_hours.close_time, tzinfo=self.zone)
        if (
            local_day.isoweekday() not in self.business_days
            or start < day_open
            or end > day_close
        ):
            raise IncompleteBookingRequest(
                ['startTime'],
                caller_message='That time is outside our business hours. Please choose one of the available times.',
            )

    def _start_of_day(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=self.zone)

    def _slot_option(self, slot: TimeSlot, index: int) -> SlotOption:
        return SlotOption(
            start_time=slot.start.isoformat(),
            end_time=slot.end.isoformat(),
            display_date=slot.display_date,
            display_time=slot.display_time,
            display_full=slot.display_full,
            voice_option=format_slot_for_voice(slot, index),
        )


def _has_value(value) -> bool:
    if isinstance(value, datetime):
        return True
    return isinstance(value, str) and bool(value.strip())


def _event_description(
    customer_name: str,
    phone_number: str,
    email: str | None,
    address: str,
    issue: str,
) -> str:
    lines = [f'Service Call for {customer_name}', '', f'Phone: {phone_number.strip()}']
    if email:
        lines.append(f'Email: {email}')
    lines.extend([
        f'Address: {address.strip()}',
        '',
        f'Issue: {issue.strip()}',
        '',
        f'Booked via the {config.COMPANY_NAME} phone assistant',
    ])
    return '\n'.join(lines)
