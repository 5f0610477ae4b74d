"""
Scout Pro API Server
Teams, players and scouting reports for baseball coaches. SQLite + FastAPI.
"""

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import date
from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field, StringConstraints, field_validator

from scout_auth import Identity
from scout_config import Settings, configure_logging
from scout_context import AppContext, build_context
from scout_errors import ScoutError, Timeout, ValidationError
from scout_store import RATING_SCALE, utcnow
from spray_charts import read_upload

# ============================================================
# LOGGING
# ============================================================

configure_logging()
logger = logging.getLogger("scoutpro")

# ============================================================
# PYDANTIC MODELS
# ============================================================

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


# --- Auth ---
class RegisterRequest(BaseModel):
    email: NonEmptyStr
    password: str = Field(..., min_length=6)
    registrationCode: str = ""

class LoginRequest(BaseModel):
    email: NonEmptyStr
    password: str

class UserOut(BaseModel):
    id: str
    email: str
    role: str

class TokenResponse(BaseModel):
    message: str
    token: str
    user: UserOut

# --- Teams ---
class TeamCreate(BaseModel):
    name: NonEmptyStr
    league: NonEmptyStr

class UserRef(BaseModel):
    id: str
    email: Optional[str] = None

class TeamResponse(BaseModel):
    id: str
    name: str
    league: str
    createdBy: Optional[UserRef] = None
    createdAt: str

# --- Players ---
class PlayerCreate(BaseModel):
    name: NonEmptyStr
    position: NonEmptyStr
    jerseyNumber: NonEmptyStr
    teamId: NonEmptyStr

    @field_validator("jerseyNumber", mode="before")
    @classmethod
    def _jersey_as_text(cls, v):
        # the UI sometimes sends numbers
        return str(v) if isinstance(v, int) and not isinstance(v, bool) else v

class TeamRef(BaseModel):
    id: str
    name: str
    league: str

class PlayerResponse(BaseModel):
    id: str
    name: str
    position: str
    jerseyNumber: str
    teamId: str
    team: Optional[TeamRef] = None
    createdAt: str

# --- Reports ---
class ReportCreate(BaseModel):
    playerId: NonEmptyStr
    date: date
    evaluations: Dict[str, str] = Field(default_factory=dict)
    notes: Optional[str] = ""

class ReportUpdate(BaseModel):
    date: date
    evaluations: Dict[str, str] = Field(default_factory=dict)
    notes: Optional[str] = ""

class PlayerRef(BaseModel):
    id: str
    name: str
    position: str
    jerseyNumber: str

class ReportResponse(BaseModel):
    id: str
    playerId: str
    player: Optional[PlayerRef] = None
    scoutId: str
    scout: Optional[UserRef] = None
    date: str
    evaluations: Dict[str, str]
    notes: Optional[str] = None
    sprayChartUrl: Optional[str] = None
    createdAt: str
    updatedAt: str

class DeleteResponse(BaseModel):
    message: str
    deleted: Dict[str, int] = Field(default_factory=dict)

class UploadResponse(BaseModel):
    message: str
    sprayChartUrl: str


# ============================================================
# DEPENDENCIES
# ============================================================

security = HTTPBearer(auto_error=False)


def get_ctx(request: Request) -> AppContext:
    return request.app.state.ctx


def client_address(request: Request, settings: Settings) -> str:
    if settings.trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


class Throttle:
    """Dependency that counts the request against one route class."""

    def __init__(self, route_class: str):
        self.route_class = route_class

    def __call__(self, request: Request, ctx: AppContext = Depends(get_ctx)) -> None:
        ctx.guard.check(self.route_class, client_address(request, ctx.settings))


def current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    ctx: AppContext = Depends(get_ctx),
) -> Identity:
    return ctx.auth.verify_token(credentials.credentials if credentials else None)


# Handlers that touch storage are plain def so they run in the threadpool and
# the request timeout can still fire while they block.
router = APIRouter(dependencies=[Depends(Throttle("general"))])
health_router = APIRouter()


# ============================================================
# AUTH ENDPOINTS
# ============================================================

@router.post(
    "/auth/register",
    response_model=TokenResponse,
    status_code=201,
    dependencies=[Depends(Throttle("register"))],
)
def register(req: RegisterRequest, ctx: AppContext = Depends(get_ctx)):
    session = ctx.auth.register(req.email, req.password, req.registrationCode)
    return TokenResponse(message="User created successfully", **session)


@router.post("/auth/login", response_model=TokenResponse, dependencies=[Depends(Throttle("login"))])
def login(req: LoginRequest, ctx: AppContext = Depends(get_ctx)):
    session = ctx.auth.login(req.email, req.password)
    return TokenResponse(message="Login successful", **session)


@router.get("/auth/me", response_model=UserOut)
def get_me(identity: Identity = Depends(current_identity), ctx: AppContext = Depends(get_ctx)):
    user = ctx.store.get_user(identity.user_id)
    return UserOut(id=user["id"], email=user["email"], role=user["role"])


# ============================================================
# TEAM ENDPOINTS
# ============================================================

@router.get("/teams", response_model=List[TeamResponse])
def list_teams(identity: Identity = Depends(current_identity), ctx: AppContext = Depends(get_ctx)):
    ctx.authorize(identity, "team:read")
    return ctx.store.list_teams()


@router.post("/teams", response_model=TeamResponse, status_code=201)
def create_team(
    team: TeamCreate,
    identity: Identity = Depends(current_identity),
    ctx: AppContext = Depends(get_ctx),
):
    ctx.authorize(identity, "team:create")
    created = ctx.store.create_team(team.name, team.league, created_by=identity.user_id)
    logger.info("Team created: %s by %s", created["id"], identity.email)
    return created


@router.get("/teams/{team_id}", response_model=TeamResponse)
def get_team(team_id: str, identity: Identity = Depends(current_identity), ctx: AppContext = Depends(get_ctx)):
    team = ctx.store.get_team(team_id)
    ctx.authorize(identity, "team:read", team)
    return team


@router.put("/teams/{team_id}", response_model=TeamResponse)
def update_team(
    team_id: str,
    team: TeamCreate,
    identity: Identity = Depends(current_identity),
    ctx: AppContext = Depends(get_ctx),
):
    ctx.authorize(identity, "team:update", ctx.store.get_team(team_id))
    return ctx.store.update_team(team_id, team.name, team.league)


@router.delete("/teams/{team_id}", response_model=DeleteResponse)
def delete_team(team_id: str, identity: Identity = Depends(current_identity), ctx: AppContext = Depends(get_ctx)):
    ctx.authorize(identity, "team:delete", ctx.store.get_team(team_id))
    cascade = ctx.store.delete_team(team_id)
    ctx.uploads.cleanup(cascade.spray_chart_urls)
    return DeleteResponse(
        message="Team and associated data deleted successfully",
        deleted={"teams": 1, "players": cascade.players, "reports": cascade.reports},
    )


# ============================================================
# PLAYER ENDPOINTS
# ============================================================

@router.get("/players", response_model=List[PlayerResponse])
def list_players(
    teamId: Optional[str] = None,
    identity: Identity = Depends(current_identity),
    ctx: AppContext = Depends(get_ctx),
):
    ctx.authorize(identity, "player:read")
    return ctx.store.list_players(team_id=teamId)


@router.post("/players", response_model=PlayerResponse, status_code=201)
def create_player(
    player: PlayerCreate,
    identity: Identity = Depends(current_identity),
    ctx: AppContext = Depends(get_ctx),
):
    ctx.authorize(identity, "player:create")
    return ctx.store.create_player(player.name, player.position, player.jerseyNumber, player.teamId)


@router.get("/players/{player_id}", response_model=PlayerResponse)
def get_player(player_id: str, identity: Identity = Depends(current_identity), ctx: AppContext = Depends(get_ctx)):
    player = ctx.store.get_player(player_id)
    ctx.authorize(identity, "player:read", player)
    return player


@router.put("/players/{player_id}", response_model=PlayerResponse)
def update_player(
    player_id: str,
    player: PlayerCreate,
    identity: Identity = Depends(current_identity),
    ctx: AppContext = Depends(get_ctx),
):
    ctx.authorize(identity, "player:update", ctx.store.get_player(player_id))
    return ctx.store.update_player(player_id, player.name, player.position, player.jerseyNumber, player.teamId)


@router.delete("/players/{player_id}", response_model=DeleteResponse)
def delete_player(
    player_id: str,
    identity: Identity = Depends(current_identity),
    ctx: AppContext = Depends(get_ctx),
):
    ctx.authorize(identity, "player:delete", ctx.store.get_player(player_id))
    cascade = ctx.store.delete_player(player_id)
    ctx.uploads.cleanup(cascade.spray_chart_urls)
    return DeleteResponse(
        message="Player and associated reports deleted successfully",
        deleted={"players": 1, "reports": cascade.reports},
    )


# ============================================================
# REPORT ENDPOINTS
# ============================================================

@router.get("/reports/ratings")
async def list_ratings(identity: Identity = Depends(current_identity)):
    return {"ratings": RATING_SCALE}


@router.get("/reports", response_model=List[ReportResponse])
def list_reports(
    playerId: Optional[str] = None,
    identity: Identity = Depends(current_identity),
    ctx: AppContext = Depends(get_ctx),
):
    ctx.authorize(identity, "report:read")
    return ctx.store.list_reports(player_id=playerId)


@router.post("/reports", response_model=ReportResponse, status_code=201)
def create_report(
    report: ReportCreate,
    identity: Identity = Depends(current_identity),
    ctx: AppContext = Depends(get_ctx),
):
    ctx.authorize(identity, "report:create")
    created = ctx.store.create_report(
        report.playerId, identity.user_id, report.date, report.evaluations, report.notes
    )
    logger.info("Report created for player %s by %s", report.playerId, identity.email)
    return created


@router.get("/reports/{report_id}", response_model=ReportResponse)
def get_report(report_id: str, identity: Identity = Depends(current_identity), ctx: AppContext = Depends(get_ctx)):
    report = ctx.store.get_report(report_id)
    ctx.authorize(identity, "report:read", report)
    return report


@router.put("/reports/{report_id}", response_model=ReportResponse)
def update_report(
    report_id: str,
    report: ReportUpdate,
    identity: Identity = Depends(current_identity),
    ctx: AppContext = Depends(get_ctx),
):
    ctx.authorize(identity, "report:update", ctx.store.get_report(report_id))
    return ctx.store.update_report(report_id, report.date, report.evaluations, report.notes)


@router.delete("/reports/{report_id}", response_model=DeleteResponse)
def delete_report(
    report_id: str,
    identity: Identity = Depends(current_identity),
    ctx: AppContext = Depends(get_ctx),
):
    ctx.authorize(identity, "report:delete", ctx.store.get_report(report_id))
    cascade = ctx.store.delete_report(report_id)
    ctx.uploads.cleanup(cascade.spray_chart_urls)
    return DeleteResponse(message="Report deleted successfully", deleted={"reports": 1})


# ============================================================
# SPRAY CHART UPLOAD
# ============================================================

@router.post(
    "/upload/spray-chart/{report_id}",
    response_model=UploadResponse,
    dependencies=[Depends(Throttle("upload"))],
)
def upload_spray_chart(
    report_id: str,
    sprayChart: Optional[UploadFile] = File(None),
    identity: Identity = Depends(current_identity),
    ctx: AppContext = Depends(get_ctx),
):
    if sprayChart is None:
        raise ValidationError("No file uploaded")
    ctx.authorize(identity, "report:upload", ctx.store.get_report(report_id))

    # type is checked before the body is read, size while reading
    ctx.uploads.check_type(sprayChart.content_type)
    contents = read_upload(sprayChart.file, ctx.uploads.max_bytes)
    url = ctx.uploads.attach_spray_chart(report_id, contents, sprayChart.content_type, sprayChart.filename)
    return UploadResponse(message="Spray chart uploaded successfully", sprayChartUrl=url)


# ============================================================
# HEALTH
# ============================================================

@health_router.get("/health")
def health_check(ctx: AppContext = Depends(get_ctx)):
    health: Dict[str, Any] = {
        "status": "OK",
        "timestamp": utcnow().isoformat(),
        "uptime": ctx.uptime(),
        "environment": ctx.settings.environment,
        "version": ctx.settings.version,
    }
    try:
        ctx.store.ping()
        health["database"] = "connected"
    except Exception:
        logger.exception("Health check: database unreachable")
        health["database"] = "error"
        health["status"] = "ERROR"

    if ctx.files.is_accessible():
        health["uploadsDirectory"] = "accessible"
    else:
        health["uploadsDirectory"] = "error"
        if health["status"] == "OK":
            health["status"] = "WARNING"

    return JSONResponse(status_code=503 if health["status"] == "ERROR" else 200, content=health)


# ============================================================
# APP FACTORY
# ============================================================

def _error_response(exc: ScoutError) -> JSONResponse:
    headers = {}
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def create_app(settings: Optional[Settings] = None, clock=utcnow) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctx = build_context(settings, clock=clock)
        ctx.start()
        app.state.ctx = ctx
        try:
            yield
        finally:
            ctx.close()

    app = FastAPI(
        title="Scout Pro API",
        description="Teams, players and scouting reports for baseball coaches",
        version=settings.version,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(GZipMiddleware, minimum_size=1024)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=86400,
    )

    health_path = f"{settings.api_prefix}/health"

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = str(uuid.uuid4())[:8]
        started = time.perf_counter()
        try:
            response = await asyncio.wait_for(call_next(request), timeout=settings.request_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Request timeout on %s %s [%s]", request.method, request.url.path, request_id)
            response = _error_response(Timeout())
        except Exception as exc:
            logger.exception("Middleware error on %s %s", request.method, request.url.path)
            detail = "Internal server error" if settings.is_production else str(exc)
            response = JSONResponse(status_code=500, content={"error": "ServerError", "detail": detail})

        response.headers["X-Request-Id"] = request_id
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "same-origin"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains; preload"

        if not (settings.is_production and request.url.path == health_path):
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info(
                "%s %s %d %.1fms [%s]",
                request.method, request.url.path, response.status_code, elapsed_ms, request_id,
            )
        return response

    @app.exception_handler(ScoutError)
    async def scout_error_handler(request: Request, exc: ScoutError):
        if exc.status_code >= 500:
            logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        return _error_response(ValidationError("Validation error", details=details))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        detail = "Internal server error" if settings.is_production else str(exc)
        return JSONResponse(status_code=500, content={"error": "ServerError", "detail": detail})

    app.include_router(router, prefix=settings.api_prefix)
    app.include_router(health_router, prefix=settings.api_prefix)

    # Serve uploaded spray charts; the directory is created on startup
    app.mount(
        settings.upload_url_prefix,
        StaticFiles(directory=settings.upload_dir, check_dir=False),
        name="uploads",
    )
    return app


app = create_app()


# ============================================================
# MAIN
# ============================================================

if __name__ == "__main__":
    import uvicorn
    settings = app.state.settings
    logger.info("Starting Scout Pro API on port %d", settings.port)
    logger.info("Database: %s", settings.db_file)
    logger.info("API Docs: http://localhost:%d/docs", settings.port)
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
