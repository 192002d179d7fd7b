"""Journey engine data models."""
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, List, Any, Callable, Set

from journey_service.flow_control.journey.errors import JourneyError, JourneyErrorCode


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Interpret naive datetimes as UTC so window comparisons never mix kinds."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class JourneyAction(str, Enum):
    """Kind of progress recorded for a user."""

    ONBOARDED = "ONBOARDED"
    MOVED = "MOVED"


@dataclass
class Stage:
    """Represents a node in a journey graph."""

    id: str
    name: str
    condition: Callable[[Dict[str, Any]], bool]
    is_onboarding: bool = False
    is_terminal: bool = False
    notify_on_transition: bool = False
    next_stage_ids: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Validate stage configuration."""
        if not self.id:
            raise ValueError("Stage id cannot be empty")
        if not self.name:
            raise ValueError("Stage name cannot be empty")
        if not callable(self.condition):
            raise ValueError(f"Stage '{self.id}' condition must be callable")

    def add_next_stage(self, stage_id: str) -> bool:
        """
        Add an outgoing edge.

        Terminal stages never gain edges; adding one is a no-op rather than
        an error. Returns whether an edge was actually added.
        """
        if self.is_terminal or stage_id in self.next_stage_ids:
            return False
        self.next_stage_ids.append(stage_id)
        return True

    def evaluate_condition(self, payload: Dict[str, Any]) -> bool:
        """Evaluate the entry condition against an event payload."""
        return bool(self.condition(payload))


@dataclass
class Journey:
    """Represents a journey graph with its activation window."""

    id: str
    name: str
    is_time_bound: bool = False
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_recurring: bool = False
    description: Optional[str] = None
    stages: Dict[str, Stage] = field(default_factory=dict)
    is_active: bool = False
    onboarding_stage_id: Optional[str] = None
    terminal_stage_id: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate journey configuration."""
        if not self.id:
            raise ValueError("Journey id cannot be empty")
        if not self.name:
            raise ValueError("Journey name cannot be empty")

        self.start_date = ensure_utc(self.start_date)
        self.end_date = ensure_utc(self.end_date)

        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError(f"Journey '{self.id}' start_date is after end_date")

    def add_stage(self, stage: Stage) -> "Journey":
        """Register a stage. Returns self for chaining."""
        if stage.id in self.stages:
            raise JourneyError(
                JourneyErrorCode.DUPLICATE_STAGE_ID,
                f"Stage with ID {stage.id} already exists in journey {self.id}",
            )
        if stage.is_onboarding and self.onboarding_stage_id is not None:
            raise JourneyError(
                JourneyErrorCode.DUPLICATE_ONBOARDING_STAGE,
                f"Journey {self.id} can only have one onboarding stage",
            )
        if stage.is_terminal and self.terminal_stage_id is not None:
            raise JourneyError(
                JourneyErrorCode.DUPLICATE_TERMINAL_STAGE,
                f"Journey {self.id} can only have one terminal stage",
            )

        self.stages[stage.id] = stage
        if stage.is_onboarding:
            self.onboarding_stage_id = stage.id
        if stage.is_terminal:
            self.terminal_stage_id = stage.id

        return self

    def connect_stages(self, source_stage_id: str, target_stage_id: str) -> bool:
        """Add an edge between two registered stages."""
        for stage_id in (source_stage_id, target_stage_id):
            if stage_id not in self.stages:
                raise JourneyError(
                    JourneyErrorCode.UNKNOWN_STAGE,
                    f"Stage {stage_id} does not exist in journey {self.id}",
                )
        return self.stages[source_stage_id].add_next_stage(target_stage_id)

    def validate(self) -> bool:
        """
        Check that the terminal stage is reachable from the onboarding stage.

        Breadth-first over next_stage_ids; the visited set makes the walk
        safe for cycles and converging edges.

        Raises:
            JourneyError: NO_ONBOARDING_STAGE, NO_TERMINAL_STAGE or
                NO_PATH_TO_TERMINAL
        """
        if self.onboarding_stage_id is None:
            raise JourneyError(
                JourneyErrorCode.NO_ONBOARDING_STAGE,
                f"Journey {self.id} must have an onboarding stage",
            )
        if self.terminal_stage_id is None:
            raise JourneyError(
                JourneyErrorCode.NO_TERMINAL_STAGE,
                f"Journey {self.id} must have a terminal stage",
            )

        visited: Set[str] = set()
        to_visit = deque([self.onboarding_stage_id])

        while to_visit:
            stage_id = to_visit.popleft()
            if stage_id == self.terminal_stage_id:
                return True
            if stage_id in visited:
                continue
            visited.add(stage_id)

            stage = self.stages.get(stage_id)
            if stage is None:
                continue
            for next_id in stage.next_stage_ids:
                if next_id not in visited:
                    to_visit.append(next_id)

        raise JourneyError(
            JourneyErrorCode.NO_PATH_TO_TERMINAL,
            f"No valid path from onboarding to terminal stage in journey {self.id}",
        )

    def is_valid_at_time(self, current_time: Optional[datetime] = None) -> bool:
        """Check whether the journey accepts events at the given instant."""
        if not self.is_active:
            return False
        if not self.is_time_bound:
            return True

        current_time = ensure_utc(current_time) or utcnow()
        if self.start_date and current_time < self.start_date:
            return False
        if self.end_date and current_time > self.end_date:
            return False
        return True

    def get_stage(self, stage_id: str) -> Optional[Stage]:
        """Get a stage by id."""
        return self.stages.get(stage_id)

    def get_onboarding_stage(self) -> Optional[Stage]:
        if self.onboarding_stage_id is None:
            return None
        return self.stages[self.onboarding_stage_id]

    def get_terminal_stage(self) -> Optional[Stage]:
        if self.terminal_stage_id is None:
            return None
        return self.stages[self.terminal_stage_id]

    def get_next_stages(self, stage_id: str) -> List[Stage]:
        """Get the outgoing stages of a stage in edge insertion order."""
        stage = self.stages.get(stage_id)
        if not stage:
            return []
        return [self.stages[next_id] for next_id in stage.next_stage_ids if next_id in self.stages]

    def to_summary(self) -> Dict[str, Any]:
        """Short description used by listings."""
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "is_time_bound": self.is_time_bound,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "is_recurring": self.is_recurring,
        }


@dataclass
class HistoryEntry:
    """One point in a user's progress through a journey."""

    stage_id: str
    timestamp: datetime
    action: JourneyAction

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage_id": self.stage_id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
        }


@dataclass
class UserJourneyState:
    """Represents one user's progress through one journey."""

    user_id: str
    journey_id: str
    current_stage_id: str
    onboarded_at: datetime
    completed_stage_ids: Set[str] = field(default_factory=set)
    history: List[HistoryEntry] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Validate state."""
        if not self.user_id:
            raise ValueError("user_id cannot be empty")
        if not self.current_stage_id:
            raise ValueError("current_stage_id cannot be empty")

    @classmethod
    def onboard(
        cls, user_id: str, journey_id: str, stage_id: str, timestamp: datetime
    ) -> "UserJourneyState":
        """Create a fresh state at the onboarding stage."""
        return cls(
            user_id=user_id,
            journey_id=journey_id,
            current_stage_id=stage_id,
            onboarded_at=timestamp,
            history=[HistoryEntry(stage_id, timestamp, JourneyAction.ONBOARDED)],
        )

    @property
    def key(self) -> tuple:
        return (self.user_id, self.journey_id)

    def move_to_stage(self, stage_id: str, timestamp: datetime) -> None:
        """Advance to a new stage, completing the current one."""
        self.completed_stage_ids.add(self.current_stage_id)
        self.current_stage_id = stage_id
        self.history.append(HistoryEntry(stage_id, timestamp, JourneyAction.MOVED))

    def has_completed_stage(self, stage_id: str) -> bool:
        return stage_id in self.completed_stage_ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "journey_id": self.journey_id,
            "current_stage_id": self.current_stage_id,
            "onboarded_at": self.onboarded_at.isoformat(),
            "completed_stage_ids": sorted(self.completed_stage_ids),
            "history": [entry.to_dict() for entry in self.history],
        }


@dataclass
class EvaluationResult:
    """A transition produced by one evaluation call."""

    journey_id: str
    action: JourneyAction
    stage_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "journey_id": self.journey_id,
            "action": self.action.value,
            "stage_id": self.stage_id,
        }


@dataclass
class EvaluationReport:
    """Outcome of one evaluation call, including journeys that failed to evaluate."""

    results: List[EvaluationResult] = field(default_factory=list)
    failed_journey_ids: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_journey_ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [result.to_dict() for result in self.results],
            "failed_journeys": list(self.failed_journey_ids),
        }
