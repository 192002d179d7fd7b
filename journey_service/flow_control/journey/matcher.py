"""Onboarding and transition matching against stage conditions."""
from typing import Optional, Dict, Any

from journey_service.flow_control.journey.models import Journey, Stage
from journey_service.logging_config import get_logger

logger = get_logger(__name__)


class JourneyMatcher:
    """
    Matches event payloads against journey stage conditions.

    Transition policy: outgoing edges are tried in the order they were added
    to the stage, and the first stage whose condition matches wins. Later
    edges are not evaluated once a match is found.
    """

    def should_onboard(self, journey: Journey, payload: Dict[str, Any]) -> bool:
        """Check the onboarding stage's entry condition."""
        onboarding_stage = journey.get_onboarding_stage()
        if onboarding_stage is None:
            return False

        matched = onboarding_stage.evaluate_condition(payload)

        logger.debug(
            "Onboarding evaluation result",
            journey_id=journey.id,
            stage_id=onboarding_stage.id,
            matched=matched,
        )

        return matched

    def select_transition(
        self,
        journey: Journey,
        current_stage_id: str,
        payload: Dict[str, Any],
    ) -> Optional[Stage]:
        """
        Pick the next stage for a payload.

        Returns:
            First outgoing stage whose condition matches, or None when the
            current stage is terminal or nothing matches
        """
        current_stage = journey.get_stage(current_stage_id)

        if current_stage is None or current_stage.is_terminal:
            return None

        for next_stage in journey.get_next_stages(current_stage_id):
            if next_stage.evaluate_condition(payload):
                logger.debug(
                    "Transition matched",
                    journey_id=journey.id,
                    from_stage=current_stage_id,
                    to_stage=next_stage.id,
                )
                return next_stage

        logger.debug(
            "No transition matched",
            journey_id=journey.id,
            current_stage=current_stage_id,
        )
        return None
