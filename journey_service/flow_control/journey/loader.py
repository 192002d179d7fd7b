"""Journey definition loader from YAML files."""
from dataclasses import dataclass
from datetime import datetime, date
from pathlib import Path
from typing import Dict, List, Any, Optional
import yaml

from journey_service.flow_control.journey.conditions import (
    Condition,
    ConditionError,
    PredicateRegistry,
    parse_condition,
    predicate_registry,
)
from journey_service.flow_control.journey.models import Journey, Stage
from journey_service.flow_control.journey import predicates  # noqa: F401  registers built-in predicates
from journey_service.logging_config import get_logger

logger = get_logger(__name__)


class JourneyValidationError(Exception):
    """Raised when journey definition validation fails."""
    pass


@dataclass
class JourneyDefinition:
    """A parsed journey plus whether its definition asks for activation."""

    journey: Journey
    activate: bool = False


class JourneyLoader:
    """Loads and validates declarative journey definitions."""

    @staticmethod
    def load_from_yaml(file_path: Path) -> Dict[str, Any]:
        """
        Load journey definition from YAML file.

        Raises:
            JourneyValidationError: If YAML is invalid or the file is empty
        """
        try:
            with open(file_path, 'r') as f:
                data = yaml.safe_load(f)

            if not data:
                raise JourneyValidationError(f"Empty YAML file: {file_path}")

            return data

        except yaml.YAMLError as e:
            raise JourneyValidationError(f"Invalid YAML in {file_path}: {e}")
        except FileNotFoundError:
            raise JourneyValidationError(f"File not found: {file_path}")

    @staticmethod
    def validate_journey_schema(data: Dict[str, Any]) -> None:
        """
        Validate journey data structure.

        Graph rules (single onboarding/terminal stage, reachability) are left
        to the Journey model and the engine.

        Raises:
            JourneyValidationError: If validation fails
        """
        if not isinstance(data, dict):
            raise JourneyValidationError("Journey definition must be a dictionary")

        required_fields = ['id', 'name', 'stages']

        for field in required_fields:
            if field not in data:
                raise JourneyValidationError(f"Missing required field: {field}")

        for field in ('id', 'name'):
            if not isinstance(data[field], str) or not data[field].strip():
                raise JourneyValidationError(f"Field '{field}' must be a non-empty string")

        for field in ('time_bound', 'recurring', 'active'):
            if field in data and not isinstance(data[field], bool):
                raise JourneyValidationError(f"Field '{field}' must be a boolean")

        for field in ('start_date', 'end_date'):
            if data.get(field) is not None:
                JourneyLoader._parse_datetime(field, data[field])

        if not isinstance(data['stages'], list) or not data['stages']:
            raise JourneyValidationError("Field 'stages' must be a non-empty list")

        for i, stage in enumerate(data['stages']):
            JourneyLoader._validate_stage(i, stage)

        connections = data.get('connections', [])
        if not isinstance(connections, list):
            raise JourneyValidationError("Field 'connections' must be a list")

        for i, connection in enumerate(connections):
            JourneyLoader._validate_connection(i, connection)

    @staticmethod
    def _validate_stage(index: int, stage_data: Dict[str, Any]) -> None:
        """Validate individual stage configuration."""
        if not isinstance(stage_data, dict):
            raise JourneyValidationError(f"Stage {index} must be a dictionary")

        required_fields = ['id', 'name', 'condition']
        for field in required_fields:
            if field not in stage_data:
                raise JourneyValidationError(f"Stage {index} missing required field: {field}")

        for field in ('id', 'name'):
            if not isinstance(stage_data[field], str) or not stage_data[field].strip():
                raise JourneyValidationError(f"Stage {index} {field} must be a non-empty string")

        if not isinstance(stage_data['condition'], dict):
            raise JourneyValidationError(f"Stage '{stage_data['id']}' condition must be a dictionary")

        for field in ('onboarding', 'terminal', 'notify_on_transition'):
            if field in stage_data and not isinstance(stage_data[field], bool):
                raise JourneyValidationError(f"Stage '{stage_data['id']}' {field} must be a boolean")

    @staticmethod
    def _validate_connection(index: int, connection: Dict[str, Any]) -> None:
        """Validate individual connection configuration."""
        if not isinstance(connection, dict):
            raise JourneyValidationError(f"Connection {index} must be a dictionary")

        for field in ('source', 'target'):
            if field not in connection:
                raise JourneyValidationError(f"Connection {index} missing required field: {field}")
            if not isinstance(connection[field], str) or not connection[field].strip():
                raise JourneyValidationError(f"Connection {index} {field} must be a non-empty string")

    @staticmethod
    def _parse_datetime(field: str, value: Any) -> datetime:
        # PyYAML already turns unquoted timestamps into datetime/date objects
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day)
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                pass
        raise JourneyValidationError(f"Field '{field}' must be an ISO 8601 datetime")

    @staticmethod
    def _parse_condition(stage_id: str, data: Dict[str, Any], registry: PredicateRegistry) -> Condition:
        try:
            return parse_condition(data, registry)
        except ConditionError as e:
            raise JourneyValidationError(f"Stage '{stage_id}' condition is invalid: {e}")

    @staticmethod
    def parse_journey(
        data: Dict[str, Any],
        registry: PredicateRegistry = predicate_registry,
    ) -> Journey:
        """
        Parse validated data into a Journey model.

        Stages are added and connected in definition order, so connection
        order sets transition priority.

        Raises:
            JourneyValidationError: If a condition cannot be built
            JourneyError: If the stages do not form a well-formed graph
        """
        start_date = data.get('start_date')
        end_date = data.get('end_date')

        try:
            journey = Journey(
                id=data['id'],
                name=data['name'],
                description=data.get('description'),
                is_time_bound=data.get('time_bound', False),
                start_date=JourneyLoader._parse_datetime('start_date', start_date) if start_date else None,
                end_date=JourneyLoader._parse_datetime('end_date', end_date) if end_date else None,
                is_recurring=data.get('recurring', False),
            )
        except ValueError as e:
            raise JourneyValidationError(str(e))

        for stage_data in data['stages']:
            journey.add_stage(
                Stage(
                    id=stage_data['id'],
                    name=stage_data['name'],
                    condition=JourneyLoader._parse_condition(
                        stage_data['id'], stage_data['condition'], registry
                    ),
                    is_onboarding=stage_data.get('onboarding', False),
                    is_terminal=stage_data.get('terminal', False),
                    notify_on_transition=stage_data.get('notify_on_transition', False),
                )
            )

        for connection in data.get('connections', []):
            added = journey.connect_stages(connection['source'], connection['target'])
            if not added:
                logger.warning(
                    "Connection ignored",
                    journey_id=journey.id,
                    source=connection['source'],
                    target=connection['target'],
                )

        return journey

    @staticmethod
    def parse_definition(
        data: Dict[str, Any],
        registry: PredicateRegistry = predicate_registry,
    ) -> JourneyDefinition:
        """Validate and parse a definition dictionary."""
        JourneyLoader.validate_journey_schema(data)
        journey = JourneyLoader.parse_journey(data, registry)
        return JourneyDefinition(journey=journey, activate=data.get('active', False))

    @staticmethod
    def load_definition_from_file(
        file_path: Path,
        registry: PredicateRegistry = predicate_registry,
    ) -> JourneyDefinition:
        """
        Load and parse a journey definition from a YAML file.

        Raises:
            JourneyValidationError: If loading or validation fails
        """
        logger.info("Loading journey from file", file_path=str(file_path))

        data = JourneyLoader.load_from_yaml(file_path)
        definition = JourneyLoader.parse_definition(data, registry)

        logger.info(
            "Journey loaded successfully",
            journey_id=definition.journey.id,
            stages_count=len(definition.journey.stages),
        )

        return definition

    @staticmethod
    def load_definitions_from_directory(
        directory: Path,
        registry: PredicateRegistry = predicate_registry,
    ) -> List[JourneyDefinition]:
        """Load all journey YAML files from a directory, sorted by file name."""
        if not directory.exists():
            raise JourneyValidationError(f"Directory not found: {directory}")

        if not directory.is_dir():
            raise JourneyValidationError(f"Not a directory: {directory}")

        definitions = []
        yaml_files = sorted(list(directory.glob("*.yaml")) + list(directory.glob("*.yml")))

        if not yaml_files:
            logger.warning("No YAML files found in directory", directory=str(directory))
            return definitions

        for file_path in yaml_files:
            try:
                definitions.append(JourneyLoader.load_definition_from_file(file_path, registry))
            except JourneyValidationError as e:
                logger.error(
                    "Failed to load journey",
                    file_path=str(file_path),
                    error=str(e),
                )
                raise

        logger.info(
            "Loaded journeys from directory",
            directory=str(directory),
            count=len(definitions),
        )

        return definitions

    @staticmethod
    def to_definition(journey: Journey) -> Dict[str, Any]:
        """
        Convert a Journey back to its declarative form.

        Stages whose condition is a plain function rather than a typed
        condition are written with condition None.
        """
        return {
            'id': journey.id,
            'name': journey.name,
            'description': journey.description,
            'time_bound': journey.is_time_bound,
            'start_date': journey.start_date.isoformat() if journey.start_date else None,
            'end_date': journey.end_date.isoformat() if journey.end_date else None,
            'recurring': journey.is_recurring,
            'active': journey.is_active,
            'stages': [
                {
                    'id': stage.id,
                    'name': stage.name,
                    'condition': stage.condition.to_dict() if isinstance(stage.condition, Condition) else None,
                    'onboarding': stage.is_onboarding,
                    'terminal': stage.is_terminal,
                    'notify_on_transition': stage.notify_on_transition,
                }
                for stage in journey.stages.values()
            ],
            'connections': [
                {'source': stage.id, 'target': target_id}
                for stage in journey.stages.values()
                for target_id in stage.next_stage_ids
            ],
        }
