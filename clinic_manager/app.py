"""FastAPI application for the clinic manager."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from urllib.parse import quote

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from . import database
from .auth import get_current_session
from .auth_events import auth_events_router
from .models import DashboardSummary
from .routes import (
    appointment_types_router,
    appointments_router,
    auth_router,
    patients_router,
    reports_router,
)
from .settings import get_settings
from .version import get_app_version

logger = logging.getLogger(__name__)

DASHBOARD_SECTIONS = ("patients", "appointments", "reports", "changePassword")
LOGIN_MODES = ("login", "register", "reset")


def _configure_logging() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _resolve_allowed_origins() -> list[str]:
    settings = get_settings()
    origins = {value.rstrip("/") for value in (settings.frontend_url, settings.backend_url) if value}
    return list(origins)


def _build_cors_config() -> dict[str, object]:
    origins = _resolve_allowed_origins()
    if origins:
        return {"allow_origins": origins, "allow_origin_regex": None}
    return {"allow_origins": [], "allow_origin_regex": r"https?://.*"}


def _redirect_to_login(request: Request) -> RedirectResponse:
    next_path = request.url.path
    if request.url.query:
        next_path = f"{next_path}?{request.url.query}"
    if not next_path or next_path in ("/", "/login"):
        return RedirectResponse("/login")
    return RedirectResponse(f"/login?next={quote(next_path, safe='')}")


def _prefers_html(request: Request) -> bool:
    accept = request.headers.get("accept") or ""
    return "text/html" in accept.lower()


def _safe_next(value: str | None) -> str:
    # Only same-site relative paths; anything else falls back to the dashboard.
    if value and value.startswith("/") and not value.startswith("//"):
        return value
    return "/dashboard"


@asynccontextmanager
async def _lifespan(api: FastAPI):
    logger.info("Initializing database at: %s", database.DB_PATH)
    database.init_db()
    yield


def _register_navigation_routes(api: FastAPI) -> None:
    @api.get("/", include_in_schema=False)
    def serve_index(request: Request):
        if get_current_session(request):
            return RedirectResponse("/dashboard")
        return RedirectResponse("/login")

    @api.get("/login", include_in_schema=False)
    def serve_login(request: Request):
        if get_current_session(request):
            return RedirectResponse(_safe_next(request.query_params.get("next")))
        return {"app": get_settings().app_name, "modes": list(LOGIN_MODES)}

    @api.get("/auth/callback", include_in_schema=False)
    def auth_callback(request: Request):
        """Landing point after an emailed auth link."""
        if get_current_session(request):
            return RedirectResponse("/dashboard")
        return RedirectResponse("/")

    @api.get("/dashboard", response_model=DashboardSummary)
    def serve_dashboard(request: Request):
        session = get_current_session(request)
        if not session:
            if _prefers_html(request):
                return _redirect_to_login(request)
            return JSONResponse({"detail": "Not authenticated"}, status_code=401)
        return DashboardSummary(
            email=session.email,
            greeting=f"Olá, {session.email}",
            sections=list(DASHBOARD_SECTIONS),
        )

    @api.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": get_app_version()}


def create_app() -> FastAPI:
    """Return a configured FastAPI app; the database is initialised on startup."""
    _configure_logging()
    settings = get_settings()
    api = FastAPI(title=f"{settings.app_name} API", version=get_app_version(), lifespan=_lifespan)
    api.include_router(auth_router)
    api.include_router(patients_router)
    api.include_router(appointment_types_router)
    api.include_router(appointments_router)
    api.include_router(reports_router)
    api.include_router(auth_events_router, include_in_schema=False)
    _register_navigation_routes(api)
    cors_config = _build_cors_config()
    api.add_middleware(
        CORSMiddleware,
        allow_origins=cors_config["allow_origins"],
        allow_origin_regex=cors_config["allow_origin_regex"],
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )
    return api


app = create_app()
