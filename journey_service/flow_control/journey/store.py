"""In-process journey storage."""
from typing import Optional, List, Dict, Tuple

from journey_service.flow_control.journey.models import Journey, UserJourneyState
from journey_service.logging_config import get_logger

logger = get_logger(__name__)

StateKey = Tuple[str, str]


class JourneyStore:
    """
    Holds journey definitions and per-user journey states in memory.

    Journeys keep registration order, which fixes the evaluation order.
    User states are keyed by (user_id, journey_id). The store does no
    locking of its own; the engine serializes access.
    """

    def __init__(self):
        self._journeys: Dict[str, Journey] = {}
        self._states: Dict[StateKey, UserJourneyState] = {}

    def add_journey(self, journey: Journey) -> None:
        self._journeys[journey.id] = journey
        logger.debug("Journey stored", journey_id=journey.id)

    def has_journey(self, journey_id: str) -> bool:
        return journey_id in self._journeys

    def get_journey(self, journey_id: str) -> Optional[Journey]:
        """Get journey definition by ID."""
        return self._journeys.get(journey_id)

    def get_all_journeys(self) -> List[Journey]:
        """Get all journeys in registration order."""
        return list(self._journeys.values())

    def get_state(self, user_id: str, journey_id: str) -> Optional[UserJourneyState]:
        return self._states.get((user_id, journey_id))

    def put_state(self, state: UserJourneyState) -> None:
        """Store a state, replacing any previous one for the same key."""
        self._states[state.key] = state
        logger.debug(
            "User journey state stored",
            user_id=state.user_id,
            journey_id=state.journey_id,
            current_stage_id=state.current_stage_id,
        )

    def get_states_for_journey(self, journey_id: str) -> List[UserJourneyState]:
        return [s for s in self._states.values() if s.journey_id == journey_id]

    def get_states_for_user(self, user_id: str) -> List[UserJourneyState]:
        return [s for s in self._states.values() if s.user_id == user_id]

    def count_states(self) -> int:
        return len(self._states)
