# ============================================================================
# DISPATCH-CORE — Application
# ============================================================================
# FastAPI app assembly:
#   - Session actor (SessionMiddleware)
#   - DispatchError -> JSON failure shape
#   - Module routes (occurrences, dispatches, crew, fleet, activity, realtime)
#   - Schema init + availability reconcile scheduler on startup
# ============================================================================

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from dispatch_core import __version__
from dispatch_core.activity import register_activity_routes
from dispatch_core.config import Settings
from dispatch_core.crew import register_crew_routes
from dispatch_core.dispatches import register_dispatch_routes
from dispatch_core.errors import DispatchError
from dispatch_core.fleet import init_fleet_scheduler, register_fleet_routes, shutdown_fleet_scheduler
from dispatch_core.occurrences import register_occurrence_routes
from dispatch_core.realtime import get_broadcaster, get_hub
from dispatch_core.realtime import register_realtime_routes
from dispatch_core.sessions import register_session_routes
from dispatch_core.store import ensure_schema, query_one

logger = logging.getLogger("dispatch_core")


# ================================================================
# LOGGING
# ================================================================

def configure_logging():
    level = getattr(logging, str(Settings.get("log_level")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


configure_logging()


# ================================================================
# FASTAPI APP
# ================================================================

app = FastAPI(title="DISPATCH-CORE", version=__version__)
app.add_middleware(SessionMiddleware, secret_key=Settings.get("session_secret"))


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.on_event("startup")
async def _startup():
    ensure_schema()
    get_hub().bind_loop(asyncio.get_running_loop())
    init_fleet_scheduler()
    logger.info(f"[App] DISPATCH-CORE {__version__} started (db={Settings.get('db_path')})")


@app.on_event("shutdown")
async def _shutdown():
    shutdown_fleet_scheduler()
    get_hub().close_all()
    logger.info("[App] DISPATCH-CORE stopped")


# ================================================================
# HEALTH
# ================================================================

@app.get("/api/ping")
async def api_ping():
    return {"ok": True, "pong": True}


@app.get("/api/health")
async def api_health():
    try:
        query_one("SELECT 1 AS up")
        db_ok = True
    except DispatchError as e:
        logger.error(f"[App] Health check: store unavailable ({e.message})")
        db_ok = False
    return JSONResponse(
        {
            "ok": db_ok,
            "version": __version__,
            "db": "ok" if db_ok else "unavailable",
            "realtime_connections": get_broadcaster().count_connections(),
        },
        status_code=200 if db_ok else 503,
    )


# ================================================================
# MODULE ROUTES
# ================================================================

register_session_routes(app)
register_occurrence_routes(app)
register_dispatch_routes(app)
register_crew_routes(app)
register_fleet_routes(app)
register_activity_routes(app)
register_realtime_routes(app)
