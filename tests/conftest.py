"""
DISPATCH-CORE — Test Infrastructure (conftest.py)
==================================================
Provides:
  - DISPATCH_TEST_MODE environment setup
  - A fresh SQLite store per test with deterministic seed data
  - FastAPI TestClient with session login
  - DB assertion helpers
"""

import os
import sqlite3
import sys
from contextlib import contextmanager
from types import SimpleNamespace

import pytest

# Ensure project root is on path
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT_DIR)

os.environ["DISPATCH_TEST_MODE"] = "1"

from dispatch_core.config import Settings  # noqa: E402
from dispatch_core.fleet.models import (  # noqa: E402
    create_base,
    create_organization,
    create_user,
    create_vehicle,
)
from dispatch_core.occurrences.engine import create_occurrence  # noqa: E402
from dispatch_core.realtime.hub import reset_hub  # noqa: E402
from dispatch_core.store import (  # noqa: E402
    ensure_schema,
    load_actor,
    query,
    query_one,
    reset_change_feed,
    reset_schema_flag,
)


# ============================================================================
# Store
# ============================================================================

@pytest.fixture(autouse=True)
def store(tmp_path):
    """Point the store at a fresh database file for every test."""
    Settings.reset()
    Settings.set("db_path", str(tmp_path / "dispatch_test.db"))
    Settings.set("test_mode", True)
    reset_change_feed()
    reset_schema_flag()
    reset_hub()
    ensure_schema()

    yield Settings.get("db_path")

    reset_hub()
    reset_change_feed()
    reset_schema_flag()
    Settings.reset()


@pytest.fixture
def seed():
    """
    Two organizations:
      SAMU  - base "Central Station", ambulances V1..V4,
              dispatchers Dana and Dario, medics Maria and Marco, observer Olga
      POL   - base "HQ", patrol car P1, dispatcher Paul
    plus one admin.
    """
    samu = create_organization("SAMU Metro", "SAMU", "samu", phone="192")
    police = create_organization("Metro Police", "POL", "police", phone="190")
    central = create_base(samu["id"], "Central Station", address="1 Main St")
    hq = create_base(police["id"], "HQ")

    vehicles = {
        ident: create_vehicle(central["id"], ident, "Basic ambulance", capacity=4)
        for ident in ("V1", "V2", "V3", "V4")
    }
    vehicles["P1"] = create_vehicle(hq["id"], "P1", "Patrol car", capacity=2)

    users = {
        "admin": create_user("Ada Admin", None, ["admin"]),
        "dispatcher": create_user("Dana Dispatch", samu["id"], ["dispatcher_samu"]),
        "dispatcher2": create_user("Dario Dispatch", samu["id"], ["dispatcher_samu"]),
        "medic": create_user("Maria Medic", samu["id"], ["samu_team"], base_id=central["id"]),
        "medic2": create_user("Marco Medic", samu["id"], ["samu_team"], base_id=central["id"]),
        "observer": create_user("Olga Observer", samu["id"], ["observer"]),
        "police_dispatcher": create_user("Paul Police", police["id"], ["dispatcher_police"]),
    }
    actors = {name: load_actor(user["id"]) for name, user in users.items()}

    return SimpleNamespace(
        samu=samu,
        police=police,
        central=central,
        hq=hq,
        vehicles=vehicles,
        users=users,
        actors=actors,
        **actors,
    )


@pytest.fixture
def new_occurrence(seed):
    """Factory: create an occurrence (medical/critical by default) as the SAMU dispatcher."""
    def _make(actor=None, **overrides):
        fields = {
            "organization_id": seed.samu["id"],
            "type": "medical",
            "priority": "critical",
            "title": "Cardiac arrest",
            "location_address": "12 Harbour Road",
            "caller_name": "J. Smith",
            "caller_phone": "555-0100",
        }
        fields.update(overrides)
        return create_occurrence(fields, actor or seed.dispatcher)
    return _make


# ============================================================================
# DB assertion helpers
# ============================================================================

def db_query(sql, params=()):
    """Run a read query against the test store."""
    return query(sql, params)


def db_count(table, where="", params=()):
    """Count rows in a table with an optional WHERE clause."""
    sql = f"SELECT COUNT(*) AS n FROM {table}"
    if where:
        sql += f" WHERE {where}"
    return query_one(sql, params)["n"]


def vehicle_status(vehicle_id):
    return query_one("SELECT status FROM vehicles WHERE id = ?", (vehicle_id,))["status"]


def occurrence_row(occurrence_id):
    return query_one("SELECT * FROM occurrences WHERE id = ?", (occurrence_id,))


def history_rows(occurrence_id):
    return query(
        "SELECT * FROM occurrence_history WHERE occurrence_id = ? ORDER BY seq", (occurrence_id,)
    )


@contextmanager
def store_locked():
    """Hold the write lock from a second connection, like another busy writer."""
    conn = sqlite3.connect(Settings.get("db_path"), isolation_level=None)
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    finally:
        conn.execute("ROLLBACK")
        conn.close()


# ============================================================================
# HTTP
# ============================================================================

@pytest.fixture
def client(store):
    """FastAPI TestClient bound to this test's store."""
    from starlette.testclient import TestClient
    import main
    with TestClient(main.app) as c:
        yield c


def login(client, user_id):
    """Sign in through the session endpoint (cookies are kept on the client)."""
    resp = client.post("/api/session/login", json={"user_id": user_id})
    assert resp.status_code == 200, resp.text
    return resp
