"""
DISPATCH-CORE — Occurrence Lifecycle Tests
Covers:
  - State machine tables (forward path, conveyance types, terminal states)
  - Status derivation from dispatches
  - create_occurrence: validation, codes, authorization
  - advance_occurrence_status: legal steps, cancellation, history
"""

import re

import pytest

from conftest import db_count, history_rows, occurrence_row, vehicle_status
from dispatch_core.dispatches.engine import advance_dispatch_status, assign_vehicle
from dispatch_core.errors import InvalidTransition, NotFound, OccurrenceClosed, Unauthorized, ValidationError
from dispatch_core.history import get_occurrence_history
from dispatch_core.occurrences.engine import advance_occurrence_status, create_occurrence
from dispatch_core.occurrences.lifecycle import (
    allowed_targets,
    check_dispatch_transition,
    check_occurrence_transition,
    derive_occurrence_status,
    next_forward_status,
)
from dispatch_core.occurrences.validation import validate_occurrence_fields


# ============================================================================
# State machine
# ============================================================================

class TestStateMachine:

    def test_forward_path_without_conveyance(self):
        path = ["pending"]
        while next_forward_status(path[-1], "police"):
            path.append(next_forward_status(path[-1], "police"))
        assert path == ["pending", "dispatched", "en_route", "on_scene", "completed"]

    @pytest.mark.parametrize("occurrence_type", ["medical", "rescue"])
    def test_conveyance_types_pass_through_transporting(self, occurrence_type):
        assert next_forward_status("on_scene", occurrence_type) == "transporting"
        assert next_forward_status("transporting", occurrence_type) == "completed"

    def test_fire_goes_straight_to_completed(self):
        assert next_forward_status("on_scene", "fire") == "completed"
        assert "transporting" not in allowed_targets("on_scene", "fire")

    def test_terminal_states_have_no_targets(self):
        assert allowed_targets("completed", "medical") == ()
        assert allowed_targets("cancelled", "medical") == ()

    def test_every_open_state_can_be_cancelled(self):
        for status in ("pending", "dispatched", "en_route", "on_scene", "transporting"):
            assert "cancelled" in allowed_targets(status, "medical")

    def test_skipping_a_step_is_rejected(self):
        with pytest.raises(InvalidTransition):
            check_occurrence_transition("dispatched", "on_scene", "medical")

    def test_pending_to_dispatched_only_through_assignment(self):
        with pytest.raises(InvalidTransition):
            check_occurrence_transition("pending", "dispatched", "medical")
        check_occurrence_transition("pending", "dispatched", "medical", via_dispatch=True)

    def test_unknown_status_rejected(self):
        with pytest.raises(InvalidTransition):
            check_occurrence_transition("pending", "archived", "medical")

    def test_dispatch_cannot_be_cancelled_directly(self):
        with pytest.raises(InvalidTransition):
            check_dispatch_transition("en_route", "cancelled", "medical")


class TestDerivation:

    def test_no_dispatches_keeps_status(self):
        assert derive_occurrence_status("pending", []) == "pending"

    def test_follows_most_advanced_open_dispatch(self):
        assert derive_occurrence_status("dispatched", ["dispatched", "en_route"]) == "en_route"

    def test_never_moves_backwards(self):
        assert derive_occurrence_status("on_scene", ["dispatched"]) == "on_scene"

    def test_completed_when_all_dispatches_complete(self):
        assert derive_occurrence_status("transporting", ["completed", "completed"]) == "completed"

    def test_completed_dispatch_does_not_close_while_another_is_open(self):
        assert derive_occurrence_status("on_scene", ["completed", "en_route"]) == "on_scene"

    def test_cancelled_dispatches_ignored(self):
        assert derive_occurrence_status("en_route", ["cancelled", "completed"]) == "completed"

    def test_terminal_occurrence_unchanged(self):
        assert derive_occurrence_status("cancelled", ["en_route"]) == "cancelled"


# ============================================================================
# create_occurrence
# ============================================================================

class TestCreateOccurrence:

    def test_creates_pending_with_code(self, seed, new_occurrence):
        occ = new_occurrence()
        assert occ["status"] == "pending"
        assert re.match(r"^SAMU-\d{4}-\d{5}$", occ["code"])
        assert occ["created_by"] == seed.dispatcher.user_id
        assert occ["closed_at"] is None

    def test_codes_increase_per_organization(self, seed, new_occurrence):
        first = new_occurrence()
        second = new_occurrence()
        police = new_occurrence(
            actor=seed.police_dispatcher, organization_id=seed.police["id"], type="police",
        )
        assert int(first["code"][-5:]) + 1 == int(second["code"][-5:])
        assert police["code"].startswith("POL-")
        assert police["code"].endswith("00001")

    def test_creation_writes_no_history(self, new_occurrence):
        occ = new_occurrence()
        assert history_rows(occ["id"]) == []

    def test_missing_required_fields(self, seed):
        with pytest.raises(ValidationError) as exc:
            create_occurrence({"organization_id": seed.samu["id"]}, seed.dispatcher)
        assert set(exc.value.fields) >= {"type", "priority", "title"}
        assert db_count("occurrences") == 0

    @pytest.mark.parametrize("title", ["Fire", "x" * 201])
    def test_title_length_bounds(self, new_occurrence, title):
        with pytest.raises(ValidationError) as exc:
            new_occurrence(title=title)
        assert "title" in exc.value.fields

    def test_coordinates_out_of_range(self, new_occurrence):
        with pytest.raises(ValidationError) as exc:
            new_occurrence(latitude=123.0, longitude=-200)
        assert {"latitude", "longitude"} <= set(exc.value.fields)

    def test_unknown_priority(self, new_occurrence):
        with pytest.raises(ValidationError):
            new_occurrence(priority="urgent")

    def test_observer_cannot_create(self, seed, new_occurrence):
        with pytest.raises(Unauthorized):
            new_occurrence(actor=seed.observer)

    def test_field_user_cannot_create(self, seed, new_occurrence):
        with pytest.raises(Unauthorized):
            new_occurrence(actor=seed.medic)

    def test_dispatcher_cannot_create_for_other_org(self, seed, new_occurrence):
        with pytest.raises(Unauthorized):
            new_occurrence(actor=seed.police_dispatcher)

    def test_admin_can_create_anywhere(self, seed, new_occurrence):
        occ = new_occurrence(actor=seed.admin, organization_id=seed.police["id"], type="police")
        assert occ["organization_id"] == seed.police["id"]

    def test_unknown_organization(self, seed, new_occurrence):
        with pytest.raises(NotFound):
            new_occurrence(actor=seed.admin, organization_id="nope")

    def test_validation_strips_and_keeps_optional_fields(self, seed):
        data = validate_occurrence_fields({
            "organization_id": seed.samu["id"],
            "type": "fire",
            "priority": "high",
            "title": "  Kitchen fire  ",
            "description": "Smoke on the 2nd floor",
        })
        assert data["title"] == "Kitchen fire"
        assert data["description"] == "Smoke on the 2nd floor"


# ============================================================================
# advance_occurrence_status
# ============================================================================

class TestAdvanceOccurrence:

    def test_cancel_pending(self, seed, new_occurrence):
        occ = new_occurrence()
        updated = advance_occurrence_status(occ["id"], "cancelled", seed.dispatcher, notes="Duplicate call")

        assert updated["status"] == "cancelled"
        assert updated["closed_at"] is not None
        assert updated["closed_by"] == seed.dispatcher.user_id
        rows = history_rows(occ["id"])
        assert len(rows) == 1
        assert (rows[0]["previous_status"], rows[0]["new_status"]) == ("pending", "cancelled")
        assert rows[0]["notes"] == "Duplicate call"

    def test_cannot_advance_pending_by_hand(self, seed, new_occurrence):
        occ = new_occurrence()
        with pytest.raises(InvalidTransition):
            advance_occurrence_status(occ["id"], "dispatched", seed.dispatcher)
        assert occurrence_row(occ["id"])["status"] == "pending"
        assert history_rows(occ["id"]) == []

    def test_terminal_occurrence_rejects_everything(self, seed, new_occurrence):
        occ = new_occurrence()
        advance_occurrence_status(occ["id"], "cancelled", seed.dispatcher)
        for target in ("en_route", "cancelled", "completed"):
            with pytest.raises(InvalidTransition):
                advance_occurrence_status(occ["id"], target, seed.dispatcher)
        assert len(history_rows(occ["id"])) == 1

    def test_field_user_cannot_cancel(self, seed, new_occurrence):
        occ = new_occurrence()
        with pytest.raises(Unauthorized):
            advance_occurrence_status(occ["id"], "cancelled", seed.medic)
        assert occurrence_row(occ["id"])["status"] == "pending"

    def test_other_org_dispatcher_cannot_cancel(self, seed, new_occurrence):
        occ = new_occurrence()
        with pytest.raises(Unauthorized):
            advance_occurrence_status(occ["id"], "cancelled", seed.police_dispatcher)

    def test_unknown_occurrence(self, seed):
        with pytest.raises(NotFound):
            advance_occurrence_status("missing", "cancelled", seed.dispatcher)

    def test_cancel_closes_open_dispatches(self, seed, new_occurrence):
        occ = new_occurrence()
        v1, v2 = seed.vehicles["V1"]["id"], seed.vehicles["V2"]["id"]
        d1 = assign_vehicle(occ["id"], v1, seed.dispatcher)
        assign_vehicle(occ["id"], v2, seed.dispatcher)
        advance_dispatch_status(d1["id"], "en_route", seed.dispatcher)

        advance_occurrence_status(occ["id"], "cancelled", seed.dispatcher)

        assert db_count("dispatches", "occurrence_id = ? AND status = 'cancelled'", (occ["id"],)) == 2
        assert db_count("dispatches", "completed_at IS NULL") == 0
        assert vehicle_status(v1) == "available"
        assert vehicle_status(v2) == "available"

    def test_manual_progress_mirrors_dispatch_path(self, seed, new_occurrence):
        occ = new_occurrence(type="fire", priority="high", title="Warehouse fire")
        assign_vehicle(occ["id"], seed.vehicles["V1"]["id"], seed.dispatcher)
        for target in ("en_route", "on_scene", "completed"):
            advance_occurrence_status(occ["id"], target, seed.dispatcher)

        final = occurrence_row(occ["id"])
        assert final["status"] == "completed"
        assert vehicle_status(seed.vehicles["V1"]["id"]) == "available"
        assert db_count("dispatches", "status = 'completed'") == 1


# ============================================================================
# Scenario: cancel mid-flight keeps history intact
# ============================================================================

class TestCancelScenario:

    def test_cancel_en_route_occurrence(self, seed, new_occurrence):
        occ = new_occurrence()
        vehicle_id = seed.vehicles["V3"]["id"]
        dispatch = assign_vehicle(occ["id"], vehicle_id, seed.dispatcher)
        advance_dispatch_status(dispatch["id"], "en_route", seed.medic)
        assert occurrence_row(occ["id"])["status"] == "en_route"

        advance_occurrence_status(occ["id"], "cancelled", seed.dispatcher, notes="Caller called back")

        assert occurrence_row(occ["id"])["status"] == "cancelled"
        assert vehicle_status(vehicle_id) == "available"

        history = get_occurrence_history(occ["id"])
        transitions = [(h["previous_status"], h["new_status"]) for h in history]
        assert transitions == [
            ("pending", "dispatched"),
            ("dispatched", "en_route"),
            ("en_route", "cancelled"),
        ]
        assert history[0]["vehicle_identifier"] == "V3"
        assert history[-1]["changed_by_name"] == "Dana Dispatch"

        with pytest.raises(OccurrenceClosed):
            advance_dispatch_status(dispatch["id"], "on_scene", seed.medic)
