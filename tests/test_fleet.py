"""
DISPATCH-CORE — Fleet, Availability & Configuration Tests
Covers:
  - Directory validation (organizations, vehicles, users)
  - Availability reconciliation and its scheduler job
  - Settings resolution
"""

import pytest

from conftest import vehicle_status
from dispatch_core.config import Settings
from dispatch_core.crew import join_vehicle
from dispatch_core.errors import NotFound, ValidationError
from dispatch_core.fleet import (
    create_organization,
    create_user,
    create_vehicle,
    derive_vehicle_status,
    get_user,
    get_vehicle,
    list_users,
    list_vehicles,
    reconcile_all,
    set_vehicle_service_status,
)
from dispatch_core.fleet import scheduler_jobs
from dispatch_core.store import transaction


def _force_status(vehicle_id, status):
    with transaction() as tx:
        tx.execute("UPDATE vehicles SET status = ? WHERE id = ?", (status, vehicle_id))


class TestDirectory:

    def test_duplicate_organization_code(self, seed):
        with pytest.raises(ValidationError) as exc:
            create_organization("Another SAMU", "samu", "samu")
        assert "code" in exc.value.fields

    def test_vehicle_identifier_unique_per_organization(self, seed):
        with pytest.raises(ValidationError):
            create_vehicle(seed.central["id"], "V1", "Ambulance")
        other = create_vehicle(seed.hq["id"], "V1", "Patrol car")
        assert other["status"] == "available"

    def test_vehicle_on_unknown_base(self, seed):
        with pytest.raises(NotFound):
            create_vehicle("missing", "X1", "Ambulance")

    def test_vehicle_read_carries_organization(self, seed):
        vehicle = get_vehicle(seed.vehicles["P1"]["id"])
        assert vehicle["organization_id"] == seed.police["id"]
        assert [v["identifier"] for v in list_vehicles(seed.police["id"])] == ["P1"]

    def test_user_roles(self, seed):
        user = get_user(seed.medic.user_id)
        assert user["roles"] == ["samu_team"]
        with pytest.raises(ValidationError) as exc:
            create_user("Rogue", seed.samu["id"], ["superuser"])
        assert "roles" in exc.value.fields
        names = [u["full_name"] for u in list_users(seed.police["id"])]
        assert names == ["Paul Police"]


class TestAvailability:

    @pytest.mark.parametrize("crew,open_dispatches,expected", [
        (0, 0, "available"),
        (1, 0, "busy"),
        (0, 2, "busy"),
        (3, 1, "busy"),
    ])
    def test_derive(self, crew, open_dispatches, expected):
        assert derive_vehicle_status(crew, open_dispatches) == expected

    def test_reconcile_clean_store(self, seed):
        join_vehicle(seed.vehicles["V1"]["id"], seed.medic.user_id, seed.medic)
        assert reconcile_all() == []

    def test_reconcile_repairs_drift(self, seed):
        v1, v2 = seed.vehicles["V1"]["id"], seed.vehicles["V2"]["id"]
        join_vehicle(v2, seed.medic.user_id, seed.medic)
        _force_status(v1, "busy")
        _force_status(v2, "available")

        repairs = reconcile_all()

        assert sorted((r["identifier"], r["old"], r["new"]) for r in repairs) == [
            ("V1", "busy", "available"),
            ("V2", "available", "busy"),
        ]
        assert vehicle_status(v1) == "available"
        assert vehicle_status(v2) == "busy"

    def test_reconcile_leaves_service_states(self, seed):
        v4 = seed.vehicles["V4"]["id"]
        set_vehicle_service_status(v4, "off_duty", seed.admin)
        assert reconcile_all() == []
        assert vehicle_status(v4) == "off_duty"


class TestReconcileScheduler:

    def test_disabled_in_test_mode(self):
        assert scheduler_jobs.init_fleet_scheduler() is False

    def test_registers_interval_job(self):
        Settings.set("test_mode", False)
        Settings.set("reconcile_interval_seconds", 3600)
        try:
            assert scheduler_jobs.init_fleet_scheduler() is True
            job = scheduler_jobs.get_fleet_scheduler().get_job(scheduler_jobs.RECONCILE_JOB_ID)
            assert job is not None
            assert job.trigger.interval.total_seconds() == 3600
        finally:
            scheduler_jobs.shutdown_fleet_scheduler()

    def test_job_runs_reconcile(self, seed):
        v1 = seed.vehicles["V1"]["id"]
        _force_status(v1, "busy")
        scheduler_jobs.run_reconcile_job()
        assert vehicle_status(v1) == "available"


class TestSettings:

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("DISPATCH_RECONCILE_INTERVAL_SECONDS", "15")
        monkeypatch.setenv("DISPATCH_RECONCILE_ENABLED", "no")
        Settings.reset("reconcile_interval_seconds")
        assert Settings.get("reconcile_interval_seconds") == 15
        assert Settings.get("reconcile_enabled") is False

    def test_bad_int_falls_back_to_default(self, monkeypatch):
        monkeypatch.setenv("DISPATCH_OCCURRENCE_CODE_WIDTH", "wide")
        Settings.reset("occurrence_code_width")
        assert Settings.get("occurrence_code_width") == 5

    def test_runtime_override_wins(self, monkeypatch):
        monkeypatch.setenv("DISPATCH_ALERT_DURATION_DEFAULT_MS", "7000")
        Settings.reset("alert_duration_default_ms")
        Settings.set("alert_duration_default_ms", 2500)
        assert Settings.get("alert_duration_default_ms") == 2500

    def test_get_all_hides_secret(self):
        values = Settings.get_all()
        assert "session_secret" not in values
        assert Settings.get_all("alerts")["seen_event_cache_size"] == 1000

    def test_code_width_setting(self, seed, new_occurrence):
        Settings.set("occurrence_code_width", 3)
        occ = new_occurrence()
        assert occ["code"].endswith("-001")
