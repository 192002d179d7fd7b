"""Administrative HTTP routes wrapping the journey engine."""
from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from journey_service.events.consumer import extract_user_id
from journey_service.events.event_queue import EventQueue
from journey_service.flow_control.journey.engine import JourneyEngine
from journey_service.flow_control.journey.errors import JourneyError, JourneyErrorCode
from journey_service.flow_control.journey.loader import JourneyLoader, JourneyValidationError
from journey_service.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter()

ERROR_STATUS_CODES = {
    JourneyErrorCode.JOURNEY_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    JourneyErrorCode.USER_NOT_ONBOARDED: status.HTTP_404_NOT_FOUND,
    JourneyErrorCode.JOURNEY_ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    JourneyErrorCode.USER_ALREADY_ONBOARDED: status.HTTP_409_CONFLICT,
}


class ActivationRequest(BaseModel):
    active: bool


async def journey_error_handler(request: Request, exc: JourneyError) -> JSONResponse:
    """Translate a JourneyError into an {error, message} response."""
    status_code = ERROR_STATUS_CODES.get(exc.code, 422)
    logger.info(
        "Request failed",
        path=request.url.path,
        error=exc.code.value,
        message=exc.message,
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def get_engine(request: Request) -> JourneyEngine:
    return request.app.state.engine


def get_event_queue(request: Request) -> EventQueue:
    return request.app.state.event_queue


@router.get("/journeys")
def list_journeys(engine: JourneyEngine = Depends(get_engine)) -> List[Dict[str, Any]]:
    return [journey.to_summary() for journey in engine.list_journeys()]


@router.post("/journeys", status_code=status.HTTP_201_CREATED)
def create_journey(
    definition: Dict[str, Any] = Body(...),
    engine: JourneyEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """Create a journey from its declarative definition."""
    try:
        parsed = JourneyLoader.parse_definition(definition)
    except JourneyValidationError as e:
        raise JourneyError(JourneyErrorCode.INVALID_JOURNEY, str(e))

    journey = engine.create_journey(parsed.journey)
    if parsed.activate:
        engine.update_state(journey.id, True)

    return journey.to_summary()


@router.post("/journeys/sweep")
def sweep_time_windows(engine: JourneyEngine = Depends(get_engine)) -> Dict[str, Any]:
    return {"changed": engine.check_and_update_time_based_journeys()}


@router.get("/journeys/{journey_id}")
def get_journey(journey_id: str, engine: JourneyEngine = Depends(get_engine)) -> Dict[str, Any]:
    return JourneyLoader.to_definition(engine.get_journey(journey_id))


@router.put("/journeys/{journey_id}/state")
def update_journey_state(
    journey_id: str,
    request: ActivationRequest,
    engine: JourneyEngine = Depends(get_engine),
) -> Dict[str, Any]:
    engine.update_state(journey_id, request.active)
    return {"journey_id": journey_id, "is_active": request.active}


@router.get("/journeys/{journey_id}/users")
def get_users_in_journey(
    journey_id: str, engine: JourneyEngine = Depends(get_engine)
) -> List[Dict[str, Any]]:
    return engine.get_users_in_journey(journey_id)


@router.get("/users/{user_id}/journeys")
def get_user_journeys(
    user_id: str, engine: JourneyEngine = Depends(get_engine)
) -> List[Dict[str, Any]]:
    return engine.get_user_journeys(user_id)


@router.get("/users/{user_id}/journeys/{journey_id}/stage")
def get_user_current_stage(
    user_id: str, journey_id: str, engine: JourneyEngine = Depends(get_engine)
) -> Dict[str, Any]:
    stage = engine.get_current_stage(user_id, journey_id)
    return {
        "user_id": user_id,
        "journey_id": journey_id,
        "stage_id": stage.id,
        "stage_name": stage.name,
    }


@router.get("/users/{user_id}/journeys/{journey_id}/onboarded")
def is_user_onboarded(
    user_id: str, journey_id: str, engine: JourneyEngine = Depends(get_engine)
) -> Dict[str, Any]:
    return {
        "user_id": user_id,
        "journey_id": journey_id,
        "is_onboarded": engine.is_onboarded(user_id, journey_id),
    }


@router.get("/users/{user_id}/journeys/{journey_id}/state")
def get_user_state(
    user_id: str, journey_id: str, engine: JourneyEngine = Depends(get_engine)
) -> Dict[str, Any]:
    return engine.get_user_state(user_id, journey_id).to_dict()


@router.post("/users/{user_id}/events")
def evaluate_user_event(
    user_id: str,
    payload: Dict[str, Any] = Body(...),
    engine: JourneyEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """Evaluate an event immediately, bypassing the event queue."""
    return engine.evaluate_event(user_id, payload).to_dict()


@router.post("/events", status_code=status.HTTP_202_ACCEPTED)
def publish_event(
    event: Dict[str, Any] = Body(...),
    event_queue: EventQueue = Depends(get_event_queue),
):
    """Publish an event for asynchronous evaluation."""
    if not extract_user_id(event):
        return JSONResponse(
            status_code=422,
            content={"error": "INVALID_EVENT", "message": "Event must carry a user_id"},
        )

    if not event_queue.publish(event):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "EVENT_QUEUE_FULL", "message": "Event queue is full, retry later"},
        )

    return {"accepted": True}
