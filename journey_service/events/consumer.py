"""Event consumer feeding inbound events into the journey engine."""
from typing import Any, Callable, Dict, List, Optional

from journey_service.flow_control.journey.engine import JourneyEngine
from journey_service.flow_control.journey.models import EvaluationResult
from journey_service.logging_config import get_logger

logger = get_logger(__name__)


def extract_user_id(event: Dict[str, Any]) -> Optional[str]:
    """Read the user id from an event envelope."""
    user_id = event.get("user_id") or event.get("userId")
    if user_id is None:
        return None
    return str(user_id)


def build_journey_consumer(
    engine: JourneyEngine,
) -> Callable[[Dict[str, Any]], List[EvaluationResult]]:
    """Create the queue callback that evaluates each event for its user."""

    def consume(event: Dict[str, Any]) -> List[EvaluationResult]:
        user_id = extract_user_id(event)
        if not user_id:
            logger.warning("Event without user id ignored", event_name=event.get("event"))
            return []

        logger.info("Processing event", event_name=event.get("event"), user_id=user_id)
        report = engine.evaluate_event(user_id, event)
        results = report.results

        if not report.ok:
            logger.warning(
                "Event evaluation incomplete",
                user_id=user_id,
                event_name=event.get("event"),
                failed_journey_ids=report.failed_journey_ids,
            )

        if results:
            for result in results:
                logger.info(
                    "User progressed",
                    user_id=user_id,
                    journey_id=result.journey_id,
                    action=result.action.value,
                    stage_id=result.stage_id,
                )
        else:
            logger.debug("No journey progressions for event", user_id=user_id)

        return results

    return consume
