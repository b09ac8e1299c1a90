import logging
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.exc import OperationalError

from backend.models.appointment import Appointment
from backend.repositories import appointment_repository
from backend.scheduling.errors import CalendarUnavailable
from backend.scheduling.slots import BusinessHours, BusyPeriod
from backend.services.booking_service import INVALID_START_MESSAGE, BookingService

NY = ZoneInfo('America/New_York')
# Sunday, January 4 2026 at 07:00 in New York.
SUNDAY_MORNING = datetime(2026, 1, 4, 12, 0, tzinfo=timezone.utc)
MONDAY_TEN = '2026-01-05T10:00:00-05:00'


class FakeGateway:
    def __init__(self, busy: list[BusyPeriod] | None = None, busy_error: Exception | None = None) -> None:
        self.busy = busy or []
        self.busy_error = busy_error
        self.create_error: Exception | None = None
        self.busy_calls: list[tuple[datetime, datetime]] = []
        self.created_events: list[dict] = []

    def get_busy_periods(self, account, start: datetime, end: datetime) -> list[BusyPeriod]:
        self.busy_calls.append((start, end))
        if self.busy_error is not None:
            raise self.busy_error
        return list(self.busy)

    def create_event(self, account, summary, description, start, end, location=None, attendee_email=None) -> str:
        if self.create_error is not None:
            raise self.create_error
        self.created_events.append({
            'account': account.email,
            'summary': summary,
            'description': description,
            'start': start,
            'end': end,
            'location': location,
            'attendee_email': attendee_email,
        })
        return f'evt-{len(self.created_events)}'


def local(day: int, hour: int) -> datetime:
    return datetime.combine(date(2026, 1, day), time(hour, 0), tzinfo=NY)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


def build_service(db_session, gateway: FakeGateway, now: datetime = SUNDAY_MORNING) -> BookingService:
    booking_service = BookingService(db_session, gateway=gateway, clock=lambda: now)
    booking_service.timezone_name = 'America/New_York'
    booking_service.zone = NY
    booking_service.duration = timedelta(minutes=60)
    booking_service.business_hours = BusinessHours(open_time=time(9, 0), close_time=time(17, 0))
    booking_service.business_days = frozenset({1, 2, 3, 4, 5})
    return booking_service


@pytest.fixture
def service(db_session, gateway) -> BookingService:
    return build_service(db_session, gateway)


def book(service: BookingService, **overrides):
    request = {
        'start_time': MONDAY_TEN,
        'customer_name': 'Jane Doe',
        'phone_number': '555-0100',
        'address': '1 Main St',
        'issue': 'Leaking pipe under the sink',
        'email': None,
        'call_id': 'call-1',
    }
    request.update(overrides)
    return service.book_appointment(**request)


def test_availability_without_active_account_skips_provider(service, gateway) -> None:
    result = service.get_available_slots()

    assert result.success is False
    assert result.slots == []
    assert 'No calendar is connected' in result.error
    assert gateway.busy_calls == []


def test_availability_lists_first_five_slots(service, gateway, make_account) -> None:
    make_account()

    result = service.get_available_slots(days_ahead=7)

    assert result.success is True
    assert result.total_available == 40
    assert [slot.start_time for slot in result.slots] == [local(5, hour).isoformat() for hour in (9, 10, 11, 12, 13)]
    assert result.slots[0].voice_option == 'Option 1: Monday, January 5 at 9:00 AM'
    assert result.message.startswith('I have 5 available time slots. Option 1: Monday, January 5 at 9:00 AM. ')
    assert gateway.busy_calls == [(SUNDAY_MORNING, datetime(2026, 1, 12, 0, 0, tzinfo=NY))]


def test_availability_serializes_with_camel_case_keys(service, make_account) -> None:
    make_account()

    payload = service.get_available_slots(days_ahead=7).model_dump(by_alias=True, exclude_none=True)

    assert payload['totalAvailable'] == 40
    assert set(payload['slots'][0]) == {'startTime', 'endTime', 'displayDate', 'displayTime', 'displayFull', 'voiceOption'}
    assert 'error' not in payload


def test_availability_honors_preferred_day_and_time_of_day(service, make_account) -> None:
    make_account()

    result = service.get_available_slots(preferred_date='tuesday', time_of_day='afternoon', days_ahead=7)

    assert result.total_available == 5
    assert [slot.start_time for slot in result.slots] == [local(6, hour).isoformat() for hour in (12, 13, 14, 15, 16)]


def test_availability_falls_back_when_preferred_day_is_closed(service, make_account) -> None:
    make_account()

    result = service.get_available_slots(preferred_date='saturday', days_ahead=7)

    assert result.success is True
    assert result.total_available == 40
    assert result.slots[0].start_time == local(5, 9).isoformat()


def test_availability_extends_window_to_cover_preferred_day(service, gateway, make_account) -> None:
    make_account()

    result = service.get_available_slots(preferred_date='next friday', days_ahead=3)

    assert result.total_available == 8
    assert result.slots[0].display_date == 'Friday, January 16'
    assert gateway.busy_calls[0][1] == datetime(2026, 1, 17, 0, 0, tzinfo=NY)


def test_availability_excludes_busy_periods(service, gateway, make_account) -> None:
    make_account()
    gateway.busy = [BusyPeriod(start=local(5, 9), end=local(5, 12))]

    result = service.get_available_slots(preferred_date='monday', days_ahead=7)

    assert result.total_available == 5
    assert result.slots[0].display_time == '12:00 PM'


def test_availability_with_no_open_slots_offers_callback(service, gateway, make_account) -> None:
    make_account()
    gateway.busy = [BusyPeriod(start=SUNDAY_MORNING, end=SUNDAY_MORNING + timedelta(days=10))]

    result = service.get_available_slots(days_ahead=7)

    assert result.success is True
    assert result.slots == []
    assert result.total_available == 0
    assert result.message == (
        "I apologize, but I don't see any available appointments in the next 7 days. "
        'Would you like me to have someone call you back to schedule?'
    )


def test_availability_calendar_failure_is_reported_not_empty(service, gateway, make_account) -> None:
    make_account()
    gateway.busy_error = CalendarUnavailable('freeBusy timed out')

    result = service.get_available_slots()

    assert result.success is False
    assert result.slots == []
    assert result.error == CalendarUnavailable.caller_message


def test_book_appointment_creates_event_and_record(service, gateway, db_session, make_account) -> None:
    make_account()

    result = book(service, email=' jane@example.com ')

    assert result.success is True
    assert result.appointment.event_id == 'evt-1'
    assert result.appointment.start_time == MONDAY_TEN
    assert result.appointment.end_time == '2026-01-05T11:00:00-05:00'
    assert result.appointment.display_time == 'Monday, January 5 at 10:00 AM'
    assert result.message == (
        'Your appointment is confirmed for Monday, January 5 at 10:00 AM. '
        "You'll receive a confirmation and reminder before your appointment."
    )

    start = local(5, 10)
    assert gateway.busy_calls == [(start - timedelta(minutes=1), start + timedelta(minutes=61))]

    event = gateway.created_events[0]
    assert event['summary'] == 'Service Call - Jane Doe'
    assert event['attendee_email'] == 'jane@example.com'
    assert event['location'] == '1 Main St'
    assert 'Phone: 555-0100' in event['description']
    assert 'Issue: Leaking pipe under the sink' in event['description']

    stored = appointment_repository.get_appointment_by_event_id(db_session, 'evt-1')
    assert stored.id == result.appointment.id
    assert stored.start_time == start
    assert stored.account_email == 'office@example.com'
    assert stored.call_id == 'call-1'
    assert stored.email == 'jane@example.com'


def test_book_appointment_interprets_naive_time_in_business_timezone(service, gateway, make_account) -> None:
    make_account()

    result = book(service, start_time='2026-01-05T10:00:00')

    assert result.success is True
    assert gateway.created_events[0]['start'] == datetime(2026, 1, 5, 15, 0, tzinfo=timezone.utc)


def test_book_appointment_accepts_utc_designator(service, gateway, make_account) -> None:
    make_account()

    result = book(service, start_time='2026-01-05T15:00:00Z')

    assert result.success is True
    assert result.appointment.start_time == MONDAY_TEN


def test_book_across_fall_back_lasts_exactly_one_hour(db_session, gateway, make_account) -> None:
    make_account()
    night_service = build_service(db_session, gateway, now=datetime(2026, 10, 25, 12, 0, tzinfo=timezone.utc))
    night_service.business_hours = BusinessHours(open_time=time(1, 0), close_time=time(3, 0))
    night_service.business_days = frozenset({7})

    # 01:30 happens twice on November 1; the first one is EDT.
    result = book(night_service, start_time='2026-11-01T01:30:00')

    assert result.success is True
    assert result.appointment.start_time == '2026-11-01T01:30:00-04:00'
    assert result.appointment.end_time == '2026-11-01T01:30:00-05:00'

    event = gateway.created_events[0]
    assert event['end'].astimezone(timezone.utc) - event['start'].astimezone(timezone.utc) == timedelta(hours=1)

    stored = appointment_repository.get_appointment_by_event_id(db_session, 'evt-1')
    assert stored.start_time == datetime(2026, 11, 1, 5, 30, tzinfo=timezone.utc)
    assert stored.end_time - stored.start_time == timedelta(hours=1)


def test_book_slot_taken_since_listing_is_retryable(service, gateway, db_session, make_account) -> None:
    make_account()
    gateway.busy = [BusyPeriod(start=local(5, 10), end=local(5, 11))]

    result = book(service)

    assert result.success is False
    assert result.should_retry is True
    assert result.error == 'Sorry, that time slot was just taken. Let me check for other available times.'
    assert gateway.created_events == []
    assert db_session.query(Appointment).count() == 0


def test_book_slot_overlapping_local_appointment_is_retryable(service, gateway, db_session, make_account) -> None:
    make_account()
    appointment_repository.create_appointment(
        db_session,
        external_event_id='evt-existing',
        caller_name='John Roe',
        phone_number='555-0199',
        service_address='2 Side St',
        issue_description='No heat',
        start_time=local(5, 10),
        end_time=local(5, 11),
        account_email='office@example.com',
    )

    result = book(service, start_time='2026-01-05T10:30:00-05:00')

    assert result.success is False
    assert result.should_retry is True
    assert gateway.created_events == []


def test_book_past_start_is_retryable(db_session, gateway, make_account) -> None:
    make_account()
    late_service = build_service(db_session, gateway, now=datetime(2026, 1, 5, 16, 0, tzinfo=timezone.utc))

    result = book(late_service, start_time='2026-01-05T09:00:00-05:00')

    assert result.success is False
    assert result.should_retry is True
    assert gateway.busy_calls == []


@pytest.mark.parametrize('missing_field', ['start_time', 'customer_name', 'phone_number', 'address', 'issue'])
def test_book_with_missing_field_is_incomplete(service, gateway, make_account, missing_field) -> None:
    make_account()

    result = book(service, **{missing_field: '  '})

    assert result.success is False
    assert result.error == (
        'Missing required information for booking. '
        'Please provide name, phone, address, and describe the issue.'
    )
    assert result.should_retry is None
    assert gateway.busy_calls == []


def test_book_with_unparseable_start_is_rejected(service, gateway, make_account) -> None:
    make_account()

    result = book(service, start_time='next tuesday around three')

    assert result.success is False
    assert result.error == INVALID_START_MESSAGE
    assert gateway.created_events == []


@pytest.mark.parametrize(
    'start_time',
    ['2026-01-05T16:30:00-05:00', '2026-01-05T08:00:00-05:00', '2026-01-10T10:00:00-05:00'],
)
def test_book_outside_business_hours_is_rejected(service, gateway, make_account, start_time) -> None:
    make_account()

    result = book(service, start_time=start_time)

    assert result.success is False
    assert 'outside our business hours' in result.error
    assert gateway.busy_calls == []


def test_book_without_active_account_is_rejected(service, gateway) -> None:
    result = book(service)

    assert result.success is False
    assert 'No calendar is connected' in result.error
    assert gateway.busy_calls == []


def test_book_calendar_failure_is_not_retryable(service, gateway, make_account) -> None:
    make_account()
    gateway.busy_error = CalendarUnavailable('freeBusy returned HTTP 500')

    result = book(service)

    assert result.success is False
    assert result.should_retry is None
    assert result.error == CalendarUnavailable.caller_message


def test_book_local_save_failure_reports_partial_commit(service, gateway, make_account, monkeypatch, caplog) -> None:
    make_account()

    def _fail_to_save(*args, **kwargs):
        raise OperationalError('INSERT INTO appointments', {}, Exception('disk I/O error'))

    monkeypatch.setattr(appointment_repository, 'create_appointment', _fail_to_save)

    with caplog.at_level(logging.ERROR, logger='backend.services.booking_service'):
        result = book(service)

    assert result.success is False
    assert result.should_retry is False
    assert 'call you to confirm' in result.error
    assert len(gateway.created_events) == 1
    assert any('PartialCommit' in record.getMessage() and 'evt-1' in record.getMessage() for record in caplog.records)


def test_book_unexpected_failure_returns_callback_message(service, gateway, make_account) -> None:
    make_account()
    gateway.create_error = RuntimeError('boom')

    result = book(service)

    assert result.success is False
    assert result.error == (
        'I had trouble booking that appointment. '
        'Let me take your information and someone will call you back to schedule.'
    )
    assert result.should_retry is None


def test_booking_result_serializes_should_retry_only_when_set(service, gateway, make_account) -> None:
    make_account()
    gateway.busy = [BusyPeriod(start=local(5, 10), end=local(5, 11))]

    payload = book(service).model_dump(by_alias=True, exclude_none=True)

    assert payload == {
        'success': False,
        'error': 'Sorry, that time slot was just taken. Let me check for other available times.',
        'shouldRetry': True,
    }
