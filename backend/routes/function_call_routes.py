import logging
from typing import Any, TypeVar

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy.orm import Session

from backend.routes.dependencies import get_db
from backend.scheduling.slots import TIME_OF_DAY_HOURS
from backend.services.booking_service import BookingService

router = APIRouter(tags=['function-calls'])

logger = logging.getLogger(__name__)

ParametersT = TypeVar('ParametersT', bound=BaseModel)


class FunctionCall(BaseModel):
    name: str
    parameters: dict[str, Any] = Field(default_factory=dict)

    @field_validator('parameters', mode='before')
    @classmethod
    def default_parameters(cls, value: Any) -> Any:
        return value or {}


class CallReference(BaseModel):
    id: str


class FunctionCallPayload(BaseModel):
    type: str
    functionCall: FunctionCall
    call: CallReference

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str) -> str:
        if value != 'function-call':
            raise ValueError("type must be 'function-call'")
        return value


class AvailableSlotsParameters(BaseModel):
    preferredDate: str | None = None
    timeOfDay: str = 'any'
    daysAhead: int | None = None

    @field_validator('timeOfDay', mode='before')
    @classmethod
    def normalize_time_of_day(cls, value: Any) -> str:
        normalized = str(value or 'any').strip().lower()
        if normalized not in TIME_OF_DAY_HOURS:
            return 'any'
        return normalized


class BookAppointmentParameters(BaseModel):
    startTime: str | None = None
    customerName: str | None = None
    phoneNumber: str | None = None
    email: str | None = None
    address: str | None = None
    issue: str | None = None


def parse_parameters(model: type[ParametersT], parameters: dict[str, Any], call_id: str) -> ParametersT:
    """Validate ``parameters``, dropping only the fields that fail validation."""
    try:
        return model.model_validate(parameters)
    except ValidationError as exc:
        invalid_fields = {error['loc'][0] for error in exc.errors() if error['loc']}
        logger.warning(
            'Dropping invalid %s fields for call %s: %s',
            model.__name__,
            call_id,
            ', '.join(sorted(str(field) for field in invalid_fields)),
        )

    return model.model_validate({key: value for key, value in parameters.items() if key not in invalid_fields})


def build_booking_service(db: Session = Depends(get_db)) -> BookingService:
    return BookingService(db)


def handle_get_available_slots(parameters: dict[str, Any], call_id: str, service: BookingService) -> dict[str, Any]:
    params = parse_parameters(AvailableSlotsParameters, parameters, call_id)

    result = service.get_available_slots(
        preferred_date=params.preferredDate,
        time_of_day=params.timeOfDay,
        days_ahead=params.daysAhead,
    )
    logger.info(
        'Available slots retrieved for call %s: success=%s count=%d',
        call_id,
        result.success,
        len(result.slots),
    )
    return result.model_dump(by_alias=True, exclude_none=True)


def handle_book_appointment(parameters: dict[str, Any], call_id: str, service: BookingService) -> dict[str, Any]:
    params = parse_parameters(BookAppointmentParameters, parameters, call_id)

    result = service.book_appointment(
        start_time=params.startTime,
        customer_name=params.customerName,
        phone_number=params.phoneNumber,
        address=params.address,
        issue=params.issue,
        email=params.email,
        call_id=call_id,
    )
    logger.info(
        'Booking attempt for call %s: success=%s appointment=%s',
        call_id,
        result.success,
        result.appointment.id if result.appointment else None,
    )
    return result.model_dump(by_alias=True, exclude_none=True)


FUNCTION_HANDLERS = {
    'getAvailableSlots': handle_get_available_slots,
    'bookAppointment': handle_book_appointment,
}


@router.post('/function-call')
def handle_function_call(
    payload: dict[str, Any],
    service: BookingService = Depends(build_booking_service),
):
    try:
        envelope = FunctionCallPayload.model_validate(payload)
    except ValidationError as exc:
        logger.warning('Invalid function-call payload: %s', exc)
        return JSONResponse(status_code=400, content={'error': exc.errors(include_url=False, include_context=False)})

    function_name = envelope.functionCall.name
    logger.info('Function call received: call=%s function=%s', envelope.call.id, function_name)

    handler = FUNCTION_HANDLERS.get(function_name)
    if handler is None:
        logger.warning('Unknown function call: %s', function_name)
        return {'result': {'error': 'Unknown function'}}

    return {'result': handler(envelope.functionCall.parameters, envelope.call.id, service)}
