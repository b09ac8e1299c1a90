"""Failure taxonomy for scheduling and calendar synchronization.

Every error carries a ``caller_message`` that is safe to read aloud to a
caller. The booking service is the only place these are turned into
structured results; everywhere else they propagate.
"""

CALLBACK_FALLBACK = (
    'Let me take your information and someone will call you back to schedule.'
)


class SchedulingError(Exception):
    """Base class for every scheduling failure."""

    caller_message = f'I had trouble with the calendar. {CALLBACK_FALLBACK}'
    should_retry = False

    def __init__(self, message: str | None = None, *, caller_message: str | None = None) -> None:
        super().__init__(message or self.caller_message)
        if caller_message is not None:
            self.caller_message = caller_message


class ReauthorizationRequired(SchedulingError):
    """The refresh token was rejected; the calendar account must be reconnected."""

    caller_message = (
        'Our calendar connection needs attention right now. '
        f'{CALLBACK_FALLBACK}'
    )


class CalendarUnavailable(SchedulingError):
    """The calendar provider failed, timed out, or answered with garbage."""

    caller_message = f'I had trouble checking the calendar. {CALLBACK_FALLBACK}'


class SlotNoLongerAvailable(SchedulingError):
    caller_message = 'Sorry, that time slot was just taken. Let me check for other available times.'
    should_retry = True


class IncompleteBookingRequest(SchedulingError):
    caller_message = (
        'Missing required information for booking. '
        'Please provide name, phone, address, and describe the issue.'
    )

    def __init__(self, missing_fields: list[str], *, caller_message: str | None = None) -> None:
        self.missing_fields = missing_fields
        super().__init__(
            f'Missing required booking fields: {", ".join(missing_fields)}',
            caller_message=caller_message,
        )


class NoActiveAccount(SchedulingError):
    caller_message = (
        'No calendar is connected right now. '
        'Let me have someone call you back to schedule.'
    )


class PartialCommit(SchedulingError):
    """The calendar event exists but the local appointment record could not be saved."""

    caller_message = (
        'I reserved that time, but I could not finish saving your booking. '
        'Someone from our office will call you to confirm the appointment.'
    )

    def __init__(self, event_id: str, account_email: str) -> None:
        self.event_id = event_id
        self.account_email = account_email
        super().__init__(f'Calendar event {event_id} for {account_email} has no local appointment record')
