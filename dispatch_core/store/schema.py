"""
DISPATCH-CORE Store — Schema
"""
import logging
import sqlite3

from ..config import Settings
from .db import get_conn

logger = logging.getLogger(__name__)

# db_path the schema was last created for
_schema_ready_for = None


def init_schema():
    """Create every table and index if missing. Safe to call repeatedly."""
    conn = get_conn()
    c = conn.cursor()
    try:
        c.execute("PRAGMA journal_mode = WAL")

        # ------------------------------------------------------------------
        # Directory: organizations, bases, vehicles
        # ------------------------------------------------------------------
        c.execute("""
            CREATE TABLE IF NOT EXISTS organizations (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                code TEXT NOT NULL UNIQUE,
                type TEXT NOT NULL CHECK (type IN ('police', 'samu', 'fire')),
                phone TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS bases (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL REFERENCES organizations(id),
                name TEXT NOT NULL,
                address TEXT,
                latitude REAL,
                longitude REAL,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS vehicles (
                id TEXT PRIMARY KEY,
                base_id TEXT NOT NULL REFERENCES bases(id),
                identifier TEXT NOT NULL,
                type TEXT NOT NULL,
                capacity INTEGER,
                status TEXT NOT NULL DEFAULT 'available'
                    CHECK (status IN ('available', 'busy', 'maintenance', 'off_duty')),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        # ------------------------------------------------------------------
        # Users, roles, preferences
        # ------------------------------------------------------------------
        c.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                full_name TEXT NOT NULL,
                organization_id TEXT REFERENCES organizations(id),
                base_id TEXT REFERENCES bases(id),
                badge_number TEXT,
                phone TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS user_roles (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id),
                role TEXT NOT NULL CHECK (role IN (
                    'admin', 'dispatcher_police', 'police_officer',
                    'dispatcher_samu', 'samu_team',
                    'dispatcher_fire', 'firefighter', 'observer'
                )),
                created_at TEXT NOT NULL,
                UNIQUE (user_id, role)
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS user_preferences (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL UNIQUE REFERENCES users(id),
                sound_enabled INTEGER NOT NULL DEFAULT 1,
                sound_volume REAL NOT NULL DEFAULT 0.5,
                critical_alerts INTEGER NOT NULL DEFAULT 1,
                high_priority_alerts INTEGER NOT NULL DEFAULT 1,
                push_notifications INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        # ------------------------------------------------------------------
        # Occurrences, dispatches, history
        # ------------------------------------------------------------------
        c.execute("""
            CREATE TABLE IF NOT EXISTS occurrence_sequences (
                organization_id TEXT NOT NULL REFERENCES organizations(id),
                year INTEGER NOT NULL,
                last_value INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (organization_id, year)
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS occurrences (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL REFERENCES organizations(id),
                code TEXT NOT NULL UNIQUE,
                type TEXT NOT NULL CHECK (type IN ('police', 'medical', 'fire', 'rescue', 'other')),
                priority TEXT NOT NULL CHECK (priority IN ('low', 'medium', 'high', 'critical')),
                status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN (
                    'pending', 'dispatched', 'en_route', 'on_scene',
                    'transporting', 'completed', 'cancelled'
                )),
                title TEXT NOT NULL,
                description TEXT,
                caller_name TEXT,
                caller_phone TEXT,
                location_address TEXT,
                location_reference TEXT,
                latitude REAL,
                longitude REAL,
                created_by TEXT NOT NULL REFERENCES users(id),
                closed_by TEXT REFERENCES users(id),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                closed_at TEXT
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS dispatches (
                id TEXT PRIMARY KEY,
                occurrence_id TEXT NOT NULL REFERENCES occurrences(id),
                vehicle_id TEXT NOT NULL REFERENCES vehicles(id),
                dispatched_by TEXT NOT NULL REFERENCES users(id),
                status TEXT NOT NULL DEFAULT 'dispatched' CHECK (status IN (
                    'dispatched', 'en_route', 'on_scene',
                    'transporting', 'completed', 'cancelled'
                )),
                dispatched_at TEXT NOT NULL,
                acknowledged_at TEXT,
                arrived_at TEXT,
                completed_at TEXT,
                notes TEXT,
                updated_at TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS occurrence_history (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                occurrence_id TEXT NOT NULL REFERENCES occurrences(id),
                dispatch_id TEXT REFERENCES dispatches(id),
                previous_status TEXT,
                new_status TEXT NOT NULL,
                changed_by TEXT NOT NULL REFERENCES users(id),
                notes TEXT,
                created_at TEXT NOT NULL
            )
        """)

        # ------------------------------------------------------------------
        # Crew
        # ------------------------------------------------------------------
        c.execute("""
            CREATE TABLE IF NOT EXISTS vehicle_crew (
                id TEXT PRIMARY KEY,
                vehicle_id TEXT NOT NULL REFERENCES vehicles(id),
                user_id TEXT NOT NULL REFERENCES users(id),
                joined_at TEXT NOT NULL,
                left_at TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        # One active crew row per user
        c.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS ux_vehicle_crew_active_user
            ON vehicle_crew (user_id) WHERE is_active = 1
        """)

        # ------------------------------------------------------------------
        # Activity log
        # ------------------------------------------------------------------
        c.execute("""
            CREATE TABLE IF NOT EXISTS activity_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                user_id TEXT,
                action TEXT NOT NULL,
                entity_type TEXT,
                entity_id TEXT,
                ok INTEGER NOT NULL DEFAULT 1,
                reason TEXT,
                details_json TEXT
            )
        """)

        indexes = (
            ("idx_bases_org", "bases", "organization_id"),
            ("idx_vehicles_base", "vehicles", "base_id"),
            ("idx_vehicles_status", "vehicles", "status"),
            ("idx_users_org", "users", "organization_id"),
            ("idx_user_roles_user", "user_roles", "user_id"),
            ("idx_occ_org", "occurrences", "organization_id"),
            ("idx_occ_status", "occurrences", "status"),
            ("idx_occ_created", "occurrences", "created_at"),
            ("idx_dispatch_occ", "dispatches", "occurrence_id"),
            ("idx_dispatch_vehicle", "dispatches", "vehicle_id"),
            ("idx_dispatch_status", "dispatches", "status"),
            ("idx_history_occ", "occurrence_history", "occurrence_id"),
            ("idx_crew_vehicle", "vehicle_crew", "vehicle_id"),
            ("idx_activity_ts", "activity_log", "timestamp"),
            ("idx_activity_entity", "activity_log", "entity_id"),
        )
        for name, table, column in indexes:
            c.execute(f"CREATE INDEX IF NOT EXISTS {name} ON {table} ({column})")
    except sqlite3.Error as e:
        logger.error(f"[Store] Schema init failed: {e}")
        raise
    finally:
        conn.close()

    logger.info(f"[Store] Schema ready at {Settings.get('db_path')}")


def ensure_schema():
    """init_schema() once per configured database path."""
    global _schema_ready_for
    path = Settings.get("db_path")
    if _schema_ready_for != path:
        init_schema()
        _schema_ready_for = path


def reset_schema_flag():
    global _schema_ready_for
    _schema_ready_for = None
