"""
DISPATCH-CORE — Concurrency & Invariant Tests
Covers:
  - Two dispatchers racing for one vehicle
  - One user joining two vehicles at once
  - Vehicle availability under random interleavings of crew and dispatch commands
  - History ordering
  - Lock contention surfacing as a retryable StoreUnavailable
"""

import random
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import db_count, db_query, history_rows, occurrence_row, store_locked, vehicle_status
from dispatch_core.config import Settings
from dispatch_core.crew import join_vehicle, leave_vehicle
from dispatch_core.dispatches import advance_dispatch_status, assign_vehicle, list_open_dispatches
from dispatch_core.errors import AlreadyCrewing, DispatchError, StoreUnavailable, VehicleUnavailable
from dispatch_core.fleet import reconcile_all
from dispatch_core.occurrences.engine import advance_occurrence_status
from dispatch_core.occurrences.lifecycle import next_forward_status
from dispatch_core.store import get_change_feed


def _race(*calls):
    """Run callables at the same moment; returns [(result, error)] in call order."""
    barrier = threading.Barrier(len(calls))

    def run(fn):
        barrier.wait()
        try:
            return fn(), None
        except DispatchError as e:
            return None, e

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        futures = [pool.submit(run, fn) for fn in calls]
        return [f.result(timeout=60) for f in futures]


def assert_availability_invariant():
    rows = db_query("""
        SELECT v.id, v.identifier, v.status,
               (SELECT COUNT(*) FROM vehicle_crew c
                WHERE c.vehicle_id = v.id AND c.is_active = 1) AS crew,
               (SELECT COUNT(*) FROM dispatches d
                WHERE d.vehicle_id = v.id AND d.status NOT IN ('completed', 'cancelled')) AS open_dispatches
        FROM vehicles v
    """)
    for row in rows:
        idle = row["crew"] == 0 and row["open_dispatches"] == 0
        assert (row["status"] == "available") == idle, row


class TestConcurrentAssignment:

    def test_one_vehicle_two_dispatchers(self, seed, new_occurrence):
        v1 = seed.vehicles["V1"]["id"]
        first = new_occurrence()
        second = new_occurrence(title="Road traffic collision")

        results = _race(
            lambda: assign_vehicle(first["id"], v1, seed.dispatcher),
            lambda: assign_vehicle(second["id"], v1, seed.dispatcher2),
        )

        successes = [r for r, e in results if e is None]
        failures = [e for r, e in results if e is not None]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], VehicleUnavailable)

        assert vehicle_status(v1) == "busy"
        assert db_count(
            "dispatches", "vehicle_id = ? AND status NOT IN ('completed', 'cancelled')", (v1,)
        ) == 1
        statuses = sorted(
            r["status"] for r in db_query(
                "SELECT status FROM occurrences WHERE id IN (?, ?)", (first["id"], second["id"])
            )
        )
        assert statuses == ["dispatched", "pending"]

    def test_many_dispatchers_one_vehicle(self, seed, new_occurrence):
        v1 = seed.vehicles["V1"]["id"]
        occurrences = [new_occurrence(title=f"Incident number {i}") for i in range(6)]

        results = _race(*[
            (lambda occ=occ: assign_vehicle(occ["id"], v1, seed.dispatcher)) for occ in occurrences
        ])

        assert sum(1 for r, e in results if e is None) == 1
        assert all(isinstance(e, VehicleUnavailable) for r, e in results if e is not None)
        assert db_count("dispatches") == 1


class TestConcurrentCrew:

    def test_one_user_two_vehicles(self, seed):
        medic = seed.medic
        v2, v3 = seed.vehicles["V2"]["id"], seed.vehicles["V3"]["id"]

        results = _race(
            lambda: join_vehicle(v2, medic.user_id, medic),
            lambda: join_vehicle(v3, medic.user_id, medic),
        )

        errors = [e for r, e in results if e is not None]
        assert len(errors) == 1
        assert isinstance(errors[0], AlreadyCrewing)
        assert db_count("vehicle_crew", "user_id = ? AND is_active = 1", (medic.user_id,)) == 1
        assert sorted([vehicle_status(v2), vehicle_status(v3)]) == ["available", "busy"]

    def test_two_users_one_vehicle(self, seed):
        v1 = seed.vehicles["V1"]["id"]
        results = _race(
            lambda: join_vehicle(v1, seed.medic.user_id, seed.medic),
            lambda: join_vehicle(v1, seed.medic2.user_id, seed.medic2),
        )
        assert all(e is None for r, e in results)
        assert vehicle_status(v1) == "busy"
        assert db_count("vehicle_crew", "vehicle_id = ? AND is_active = 1", (v1,)) == 2


class TestRandomInterleavings:
    """
    Random sequences of join / leave / assign / advance / cancel. Commands
    are allowed to fail; the availability rule must hold after every one.
    """

    @pytest.mark.parametrize("rng_seed", [7, 42, 1234])
    def test_availability_holds(self, seed, new_occurrence, rng_seed):
        rng = random.Random(rng_seed)
        vehicle_ids = [seed.vehicles[k]["id"] for k in ("V1", "V2", "V3", "V4")]
        crew = [seed.medic, seed.medic2]
        types = ["medical", "fire", "police"]
        occurrences = [
            new_occurrence(title=f"Random incident {i}", type=types[i % 3]) for i in range(4)
        ]

        def op_join():
            actor = rng.choice(crew)
            join_vehicle(rng.choice(vehicle_ids), actor.user_id, actor)

        def op_leave():
            actor = rng.choice(crew)
            leave_vehicle(actor.user_id, actor)

        def op_assign():
            assign_vehicle(rng.choice(occurrences)["id"], rng.choice(vehicle_ids), seed.dispatcher)

        def op_advance():
            open_dispatches = list_open_dispatches(seed.samu["id"])
            if not open_dispatches:
                return
            d = rng.choice(open_dispatches)
            advance_dispatch_status(
                d["id"], next_forward_status(d["status"], d["occurrence_type"]), seed.dispatcher
            )

        def op_cancel():
            if rng.random() < 0.3:
                advance_occurrence_status(rng.choice(occurrences)["id"], "cancelled", seed.dispatcher)

        operations = [op_join, op_leave, op_assign, op_advance, op_advance, op_cancel]
        for _ in range(80):
            try:
                rng.choice(operations)()
            except DispatchError:
                pass
            assert_availability_invariant()

        assert reconcile_all() == []


class TestHistoryOrdering:

    def test_history_follows_transition_order(self, seed, new_occurrence):
        occ = new_occurrence()
        d1 = assign_vehicle(occ["id"], seed.vehicles["V1"]["id"], seed.dispatcher)
        d2 = assign_vehicle(occ["id"], seed.vehicles["V2"]["id"], seed.dispatcher)
        advance_dispatch_status(d2["id"], "en_route", seed.dispatcher)
        advance_dispatch_status(d1["id"], "en_route", seed.dispatcher)
        advance_dispatch_status(d2["id"], "on_scene", seed.dispatcher)

        rows = history_rows(occ["id"])
        assert [(r["dispatch_id"], r["new_status"]) for r in rows] == [
            (d1["id"], "dispatched"),
            (d2["id"], "dispatched"),
            (d2["id"], "en_route"),
            (d1["id"], "en_route"),
            (d2["id"], "on_scene"),
        ]
        created = [r["created_at"] for r in rows]
        assert created == sorted(created)


class TestStoreUnavailable:

    def test_locked_store_rejects_assignment_untouched(self, seed, new_occurrence):
        occ = new_occurrence()
        v1 = seed.vehicles["V1"]["id"]
        published = []
        for table in ("occurrences", "dispatches", "vehicles", "occurrence_history"):
            get_change_feed().subscribe(table, published.append)
        Settings.set("db_timeout_seconds", 0)

        with store_locked():
            with pytest.raises(StoreUnavailable) as exc:
                assign_vehicle(occ["id"], v1, seed.dispatcher)

        assert exc.value.retryable is True
        assert exc.value.status_code == 503
        assert exc.value.to_dict()["retryable"] is True
        assert db_count("dispatches") == 0
        assert db_count("occurrence_history") == 0
        assert vehicle_status(v1) == "available"
        assert occurrence_row(occ["id"])["status"] == "pending"
        assert published == []

    def test_retry_after_lock_released(self, seed, new_occurrence):
        occ = new_occurrence()
        v1 = seed.vehicles["V1"]["id"]
        Settings.set("db_timeout_seconds", 0)

        with store_locked():
            with pytest.raises(StoreUnavailable):
                assign_vehicle(occ["id"], v1, seed.dispatcher)

        dispatch = assign_vehicle(occ["id"], v1, seed.dispatcher)
        assert dispatch["status"] == "dispatched"
        assert db_count("dispatches") == 1
        assert vehicle_status(v1) == "busy"

    def test_locked_store_rejects_crew_join(self, seed):
        v1 = seed.vehicles["V1"]["id"]
        Settings.set("db_timeout_seconds", 0)

        with store_locked():
            with pytest.raises(StoreUnavailable):
                join_vehicle(v1, seed.medic.user_id, seed.medic)

        assert db_count("vehicle_crew") == 0
        assert vehicle_status(v1) == "available"
