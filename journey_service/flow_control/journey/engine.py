"""Journey engine: registration, event evaluation and time windows."""
import copy
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, List, Callable

from prometheus_client import Counter

from journey_service.business.notification_service import NotificationDispatcher
from journey_service.flow_control.journey.errors import JourneyError, JourneyErrorCode
from journey_service.flow_control.journey.loader import JourneyLoader
from journey_service.flow_control.journey.matcher import JourneyMatcher
from journey_service.flow_control.journey.models import (
    EvaluationReport,
    EvaluationResult,
    Journey,
    JourneyAction,
    Stage,
    UserJourneyState,
    ensure_utc,
    utcnow,
)
from journey_service.flow_control.journey.store import JourneyStore
from journey_service.logging_config import get_logger

logger = get_logger(__name__)

journey_transitions_total = Counter(
    "journey_transitions_total",
    "Total user journey transitions",
    ["journey_id", "action"],
)
journey_evaluation_failures_total = Counter(
    "journey_evaluation_failures_total",
    "Journey evaluations that failed with an unexpected error",
    ["journey_id"],
)
journey_activation_changes_total = Counter(
    "journey_activation_changes_total",
    "Journey activation flag changes",
    ["source", "active"],
)


class JourneyEngine:
    """
    Owns all journeys and all user journey states.

    Every public operation runs under one re-entrant lock, so the event
    dispatcher, the sweeper and the HTTP surface may share an engine.
    """

    def __init__(
        self,
        store: Optional[JourneyStore] = None,
        matcher: Optional[JourneyMatcher] = None,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store or JourneyStore()
        self.matcher = matcher or JourneyMatcher()
        self.notifier = notifier
        self.clock = clock
        self._lock = threading.RLock()

    def initialize(self, definitions_dir: Path) -> int:
        """
        Register journey definitions from a directory of YAML files.

        Definitions flagged active are activated after registration.

        Returns:
            Number of journeys registered
        """
        definitions = JourneyLoader.load_definitions_from_directory(Path(definitions_dir))

        with self._lock:
            for definition in definitions:
                self.create_journey(definition.journey)
                if definition.activate:
                    self.update_state(definition.journey.id, True)

        logger.info("Journey engine initialized", journeys=len(definitions))
        return len(definitions)

    # -- Journey lifecycle -------------------------------------------------

    def create_journey(self, journey: Journey) -> Journey:
        """
        Validate and register a journey. Registered journeys start inactive.

        Raises:
            JourneyError: JOURNEY_ALREADY_EXISTS, or INVALID_JOURNEY wrapping
                the validation failure
        """
        with self._lock:
            if self.store.has_journey(journey.id):
                raise JourneyError(
                    JourneyErrorCode.JOURNEY_ALREADY_EXISTS,
                    f"Journey with ID {journey.id} already exists",
                )

            try:
                journey.validate()
            except JourneyError as e:
                logger.warning(
                    "Journey rejected",
                    journey_id=journey.id,
                    reason=e.code.value,
                )
                raise JourneyError(JourneyErrorCode.INVALID_JOURNEY, e.message) from e

            journey.is_active = False
            self.store.add_journey(journey)

        logger.info(
            "Journey created",
            journey_id=journey.id,
            journey_name=journey.name,
            stages_count=len(journey.stages),
            time_bound=journey.is_time_bound,
            recurring=journey.is_recurring,
        )
        return journey

    def update_state(self, journey_id: str, active: bool) -> bool:
        """Set a journey's activation flag."""
        with self._lock:
            journey = self.get_journey(journey_id)
            journey.is_active = active

        journey_activation_changes_total.labels(source="manual", active=str(active).lower()).inc()
        logger.info("Journey state updated", journey_id=journey_id, active=active)
        return True

    def get_journey(self, journey_id: str) -> Journey:
        with self._lock:
            journey = self.store.get_journey(journey_id)
            if journey is None:
                raise JourneyError(
                    JourneyErrorCode.JOURNEY_NOT_FOUND,
                    f"Journey with ID {journey_id} not found",
                )
            return journey

    def list_journeys(self) -> List[Journey]:
        with self._lock:
            return self.store.get_all_journeys()

    def check_and_update_time_based_journeys(self, now: Optional[datetime] = None) -> List[str]:
        """
        Align activation flags of time-bound journeys with their windows.

        Active journeys past their end date are deactivated; inactive
        journeys whose start date has arrived and whose end date has not
        passed are activated. Running it again at the same instant changes
        nothing.

        Returns:
            IDs of journeys whose flag changed
        """
        now = ensure_utc(now) or self.clock()
        changed: List[str] = []

        with self._lock:
            for journey in self.store.get_all_journeys():
                if not journey.is_time_bound:
                    continue

                ended = journey.end_date is not None and now > journey.end_date
                started = journey.start_date is not None and now >= journey.start_date

                if journey.is_active and ended:
                    journey.is_active = False
                    changed.append(journey.id)
                    journey_activation_changes_total.labels(source="sweep", active="false").inc()
                    logger.info(
                        "Journey deactivated, end date passed",
                        journey_id=journey.id,
                        end_date=journey.end_date.isoformat(),
                    )
                elif not journey.is_active and started and not ended:
                    journey.is_active = True
                    changed.append(journey.id)
                    journey_activation_changes_total.labels(source="sweep", active="true").inc()
                    logger.info(
                        "Journey activated, start date arrived",
                        journey_id=journey.id,
                        start_date=journey.start_date.isoformat(),
                    )

        logger.debug("Time window sweep completed", changed=len(changed))
        return changed

    # -- Per-user operations -----------------------------------------------

    def is_onboarded(self, user_id: str, journey_id: str) -> bool:
        with self._lock:
            self.get_journey(journey_id)
            return self.store.get_state(user_id, journey_id) is not None

    def get_user_state(self, user_id: str, journey_id: str) -> UserJourneyState:
        """Get a copy of a user's state in a journey."""
        with self._lock:
            return copy.deepcopy(self._require_state(user_id, journey_id))

    def get_current_stage(self, user_id: str, journey_id: str) -> Stage:
        with self._lock:
            state = self._require_state(user_id, journey_id)
            journey = self.get_journey(journey_id)
            return journey.get_stage(state.current_stage_id)

    def onboard_user(
        self,
        user_id: str,
        journey: Journey,
        timestamp: Optional[datetime] = None,
    ) -> UserJourneyState:
        """
        Place a user at the onboarding stage of a journey.

        Recurring journeys replace any existing state for the user.

        Raises:
            JourneyError: JOURNEY_NOT_FOUND, or USER_ALREADY_ONBOARDED for a
                non-recurring journey the user already joined
        """
        timestamp = ensure_utc(timestamp) or self.clock()

        with self._lock:
            self.get_journey(journey.id)
            existing = self.store.get_state(user_id, journey.id)

            if existing is not None and not journey.is_recurring:
                raise JourneyError(
                    JourneyErrorCode.USER_ALREADY_ONBOARDED,
                    f"User {user_id} is already onboarded to journey {journey.id}",
                )

            onboarding_stage = journey.get_onboarding_stage()
            state = UserJourneyState.onboard(
                user_id, journey.id, onboarding_stage.id, timestamp
            )
            self.store.put_state(state)

        journey_transitions_total.labels(
            journey_id=journey.id, action=JourneyAction.ONBOARDED.value
        ).inc()
        logger.info(
            "User onboarded",
            user_id=user_id,
            journey_id=journey.id,
            stage_id=onboarding_stage.id,
            replaced=existing is not None,
        )
        return copy.deepcopy(state)

    def move_user_to_next_stage(
        self,
        user_id: str,
        journey: Journey,
        next_stage: Stage,
        timestamp: Optional[datetime] = None,
    ) -> UserJourneyState:
        """
        Advance a user along one outgoing edge of their current stage.

        Raises:
            JourneyError: USER_NOT_ONBOARDED, or INVALID_STAGE_TRANSITION when
                next_stage is not an outgoing edge of the current stage
        """
        timestamp = ensure_utc(timestamp) or self.clock()

        with self._lock:
            state = self._require_state(user_id, journey.id)
            current_stage = journey.get_stage(state.current_stage_id)

            if current_stage is None or next_stage.id not in current_stage.next_stage_ids:
                raise JourneyError(
                    JourneyErrorCode.INVALID_STAGE_TRANSITION,
                    f"Stage {next_stage.id} is not a valid next stage from {state.current_stage_id}",
                )

            from_stage = state.current_stage_id
            state.move_to_stage(next_stage.id, timestamp)

        journey_transitions_total.labels(
            journey_id=journey.id, action=JourneyAction.MOVED.value
        ).inc()
        logger.info(
            "User moved to next stage",
            user_id=user_id,
            journey_id=journey.id,
            from_stage=from_stage,
            to_stage=next_stage.id,
        )
        return copy.deepcopy(state)

    # -- Evaluation --------------------------------------------------------

    def evaluate(self, user_id: str, payload: Dict[str, Any]) -> List[EvaluationResult]:
        """
        Apply one inbound event to every journey.

        Returns:
            Transitions produced, in journey registration order
        """
        return self.evaluate_event(user_id, payload).results

    def evaluate_event(self, user_id: str, payload: Dict[str, Any]) -> EvaluationReport:
        """
        Apply one inbound event to every journey and report failures.

        Each journey is evaluated independently: one event may onboard the
        user into one journey and advance them in another. All transitions
        from one call share a single timestamp. A journey that fails
        unexpectedly is logged, counted and listed in the report's
        failed_journey_ids; transitions already applied for other journeys
        stay in place.
        """
        timestamp = self.clock()
        report = EvaluationReport()

        with self._lock:
            for journey in self.store.get_all_journeys():
                try:
                    self._evaluate_journey(user_id, journey, payload, timestamp, report.results)
                except Exception:
                    report.failed_journey_ids.append(journey.id)
                    journey_evaluation_failures_total.labels(journey_id=journey.id).inc()
                    logger.exception(
                        "Journey evaluation failed",
                        user_id=user_id,
                        journey_id=journey.id,
                    )

        logger.debug(
            "Event evaluated",
            user_id=user_id,
            event_name=payload.get("event") if isinstance(payload, dict) else None,
            transitions=len(report.results),
            failed=len(report.failed_journey_ids),
        )
        return report

    def _evaluate_journey(
        self,
        user_id: str,
        journey: Journey,
        payload: Dict[str, Any],
        timestamp: datetime,
        results: List[EvaluationResult],
    ) -> None:
        if not journey.is_valid_at_time(timestamp):
            return

        state = self.store.get_state(user_id, journey.id)

        if state is None or journey.is_recurring:
            if self.matcher.should_onboard(journey, payload):
                try:
                    self.onboard_user(user_id, journey, timestamp)
                except JourneyError as e:
                    if e.code != JourneyErrorCode.USER_ALREADY_ONBOARDED:
                        raise
                else:
                    stage = journey.get_onboarding_stage()
                    results.append(
                        EvaluationResult(journey.id, JourneyAction.ONBOARDED, stage.id)
                    )
                    self._notify(user_id, journey, stage)

        # Re-read: onboarding above may have just created or replaced the state
        state = self.store.get_state(user_id, journey.id)
        if state is None:
            return

        next_stage = self.matcher.select_transition(journey, state.current_stage_id, payload)
        if next_stage is None:
            return

        self.move_user_to_next_stage(user_id, journey, next_stage, timestamp)
        results.append(EvaluationResult(journey.id, JourneyAction.MOVED, next_stage.id))
        self._notify(user_id, journey, next_stage)

    def _notify(self, user_id: str, journey: Journey, stage: Stage) -> None:
        """Send the transition notification; failures never undo the transition."""
        if not stage.notify_on_transition or self.notifier is None:
            return

        message = f"You have reached '{stage.name}' in '{journey.name}'"
        try:
            sent = self.notifier.send(user_id, message)
        except Exception as e:
            logger.error(
                "Notification failed",
                user_id=user_id,
                journey_id=journey.id,
                stage_id=stage.id,
                error=str(e),
            )
            return

        if not sent:
            logger.warning(
                "Notification not delivered",
                user_id=user_id,
                journey_id=journey.id,
                stage_id=stage.id,
            )

    # -- Queries -----------------------------------------------------------

    def get_users_in_journey(self, journey_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            self.get_journey(journey_id)
            return [
                {
                    "user_id": state.user_id,
                    "current_stage_id": state.current_stage_id,
                    "onboarded_at": state.onboarded_at,
                }
                for state in self.store.get_states_for_journey(journey_id)
            ]

    def get_user_journeys(self, user_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            journeys = []
            for state in self.store.get_states_for_user(user_id):
                journey = self.get_journey(state.journey_id)
                journeys.append({
                    "journey_id": journey.id,
                    "journey_name": journey.name,
                    "current_stage_id": state.current_stage_id,
                    "onboarded_at": state.onboarded_at,
                })
            return journeys

    def _require_state(self, user_id: str, journey_id: str) -> UserJourneyState:
        state = self.store.get_state(user_id, journey_id)
        if state is None:
            raise JourneyError(
                JourneyErrorCode.USER_NOT_ONBOARDED,
                f"User {user_id} is not onboarded to journey {journey_id}",
            )
        return state
