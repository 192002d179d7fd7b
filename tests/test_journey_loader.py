"""Unit tests for declarative journey definitions."""
import pytest
from datetime import datetime, timezone
from pathlib import Path

from journey_service.flow_control.journey.conditions import Equals
from journey_service.flow_control.journey.engine import JourneyEngine
from journey_service.flow_control.journey.errors import JourneyError, JourneyErrorCode
from journey_service.flow_control.journey.loader import JourneyLoader, JourneyValidationError

BUNDLED_JOURNEYS = Path(__file__).parent.parent / "data" / "journeys"


def definition(**overrides):
    data = {
        "id": "j1",
        "name": "First Time User Recharge Journey",
        "stages": [
            {
                "id": "s1",
                "name": "Login",
                "onboarding": True,
                "condition": {"type": "equals", "field": "event", "value": "login"},
            },
            {
                "id": "s2",
                "name": "Recharge Page View",
                "condition": {"type": "equals", "field": "details.page", "value": "recharge"},
            },
            {
                "id": "s3",
                "name": "Recharge Transaction",
                "terminal": True,
                "notify_on_transition": True,
                "condition": {"type": "equals", "field": "details.type", "value": "recharge"},
            },
        ],
        "connections": [
            {"source": "s1", "target": "s2"},
            {"source": "s2", "target": "s3"},
        ],
    }
    data.update(overrides)
    return data


class TestJourneyLoader:
    """Test schema checks and parsing."""

    def test_parse_definition(self):
        parsed = JourneyLoader.parse_definition(definition(active=True))
        journey = parsed.journey

        assert parsed.activate is True
        assert journey.is_active is False
        assert journey.onboarding_stage_id == "s1"
        assert journey.terminal_stage_id == "s3"
        assert journey.stages["s1"].next_stage_ids == ["s2"]
        assert journey.stages["s3"].notify_on_transition is True
        assert journey.stages["s2"].condition == Equals("details.page", "recharge")
        assert journey.validate() is True

    def test_time_window_fields(self):
        parsed = JourneyLoader.parse_definition(definition(
            time_bound=True,
            recurring=True,
            start_date="2026-11-01T00:00:00Z",
            end_date="2026-11-08",
        ))
        journey = parsed.journey

        assert journey.is_time_bound is True
        assert journey.is_recurring is True
        assert journey.start_date.tzinfo == timezone.utc
        assert journey.end_date.day == 8

    @pytest.mark.parametrize("overrides, message", [
        ({"id": ""}, "Field 'id' must be a non-empty string"),
        ({"stages": []}, "Field 'stages' must be a non-empty list"),
        ({"recurring": "yes"}, "Field 'recurring' must be a boolean"),
        ({"start_date": "next week"}, "ISO 8601"),
        ({"connections": {"s1": "s2"}}, "Field 'connections' must be a list"),
        ({"connections": [{"source": "s1"}]}, "missing required field: target"),
    ])
    def test_schema_errors(self, overrides, message):
        with pytest.raises(JourneyValidationError, match=message):
            JourneyLoader.parse_definition(definition(**overrides))

    def test_missing_required_field(self):
        data = definition()
        del data["name"]

        with pytest.raises(JourneyValidationError, match="Missing required field: name"):
            JourneyLoader.parse_definition(data)

    def test_invalid_condition(self):
        data = definition()
        data["stages"][1]["condition"] = {"type": "eval", "source": "lambda p: True"}

        with pytest.raises(JourneyValidationError, match="Stage 's2' condition is invalid"):
            JourneyLoader.parse_definition(data)

    def test_graph_errors_propagate(self):
        data = definition()
        data["stages"][1]["onboarding"] = True

        with pytest.raises(JourneyError) as exc_info:
            JourneyLoader.parse_definition(data)
        assert exc_info.value.code == JourneyErrorCode.DUPLICATE_ONBOARDING_STAGE

        data = definition(connections=[{"source": "s1", "target": "s9"}])
        with pytest.raises(JourneyError) as exc_info:
            JourneyLoader.parse_definition(data)
        assert exc_info.value.code == JourneyErrorCode.UNKNOWN_STAGE

    def test_to_definition(self):
        journey = JourneyLoader.parse_definition(definition()).journey

        data = JourneyLoader.to_definition(journey)

        assert data["id"] == "j1"
        assert [s["id"] for s in data["stages"]] == ["s1", "s2", "s3"]
        assert data["stages"][0]["condition"] == {"type": "equals", "field": "event", "value": "login"}
        assert data["connections"] == [
            {"source": "s1", "target": "s2"},
            {"source": "s2", "target": "s3"},
        ]


class TestLoadFromFiles:
    """Test loading YAML files from disk."""

    def test_load_from_yaml_errors(self, tmp_path):
        empty = tmp_path / "empty.yaml"
        empty.write_text("")
        broken = tmp_path / "broken.yaml"
        broken.write_text("id: [unclosed")

        with pytest.raises(JourneyValidationError, match="Empty YAML file"):
            JourneyLoader.load_from_yaml(empty)
        with pytest.raises(JourneyValidationError, match="Invalid YAML"):
            JourneyLoader.load_from_yaml(broken)
        with pytest.raises(JourneyValidationError, match="File not found"):
            JourneyLoader.load_from_yaml(tmp_path / "missing.yaml")

    def test_load_directory(self, tmp_path):
        (tmp_path / "b.yaml").write_text(
            "id: second\n"
            "name: Second\n"
            "stages:\n"
            "  - id: only\n"
            "    name: Only\n"
            "    onboarding: true\n"
            "    terminal: true\n"
            "    condition: {type: exists, field: event}\n"
        )
        (tmp_path / "a.yml").write_text(
            "id: first\n"
            "name: First\n"
            "active: true\n"
            "stages:\n"
            "  - id: only\n"
            "    name: Only\n"
            "    onboarding: true\n"
            "    terminal: true\n"
            "    condition: {type: exists, field: event}\n"
        )

        definitions = JourneyLoader.load_definitions_from_directory(tmp_path)

        assert [d.journey.id for d in definitions] == ["first", "second"]
        assert [d.activate for d in definitions] == [True, False]

    def test_missing_directory(self, tmp_path):
        with pytest.raises(JourneyValidationError, match="Directory not found"):
            JourneyLoader.load_definitions_from_directory(tmp_path / "nope")

    def test_bundled_journeys(self, clock):
        """The shipped definitions register and drive the recharge journey."""
        engine = JourneyEngine(clock=clock)

        assert engine.initialize(BUNDLED_JOURNEYS) == 3
        assert engine.get_journey("j1").is_active is True
        assert engine.get_journey("j2").is_active is True
        assert engine.get_journey("promo1").is_active is False

        engine.evaluate("user1", {"event": "login"})
        engine.evaluate("user1", {"event": "page_view", "details": {"page": "recharge"}})
        results = engine.evaluate(
            "user1", {"event": "transaction", "details": {"type": "recharge", "amount": 100}}
        )

        assert [r.to_dict() for r in results] == [
            {"journey_id": "j1", "action": "MOVED", "stage_id": "s3_j1"}
        ]

    def test_bundled_promotion(self, clock, notifier):
        """The promotion opens with its window, onboards once, and completes only on redemption."""
        engine = JourneyEngine(notifier=notifier, clock=clock)
        engine.initialize(BUNDLED_JOURNEYS)
        promo = engine.get_journey("promo1")
        banner = {"event": "banner_view", "details": {"banner": "special_promo"}}
        promo_page = {"event": "page_view", "details": {"page": "special_promo"}}

        assert promo.is_recurring is False
        assert engine.evaluate("user1", banner) == []

        clock.now = datetime(2026, 11, 2, tzinfo=timezone.utc)
        assert engine.check_and_update_time_based_journeys() == ["promo1"]

        engine.evaluate("user1", banner)
        engine.evaluate("user1", promo_page)
        assert engine.evaluate("user1", banner) == []
        assert engine.get_current_stage("user1", "promo1").id == "s2_promo"

        high_value_recharge = {"event": "transaction", "details": {"type": "recharge", "amount": 900}}
        assert engine.evaluate("user1", high_value_recharge) == []

        results = engine.evaluate("user1", {"event": "redeem_promo"})

        assert [r.to_dict() for r in results] == [
            {"journey_id": "promo1", "action": "MOVED", "stage_id": "s3_promo"}
        ]
        assert notifier.sent == []
