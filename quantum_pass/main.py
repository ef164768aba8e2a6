import logging
import uuid
from typing import Any, List, Optional, Union

from fastapi import APIRouter, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from redis.asyncio import Redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool

from .admin import router as admin_router, write_audit
from .auth import ChallengeManager, normalize_address
from .config import Settings, load_settings
from .db import init_db, make_engine, make_session_factory
from .errors import InvalidInput, InvalidSession, PurchaseInProgress, RateLimited, TicketingError
from .idempotency import claim, get_cached_response, release, set_cached_response
from .ledger import InventoryLedger
from .rate_limit import token_bucket
from .security import mint_session_token, verify_session_token
from .tickets import TicketRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NonceReq(CamelModel):
    address: Optional[str] = None

class VerifyReq(CamelModel):
    address: Optional[str] = None
    signature: Optional[str] = None

class TierReq(CamelModel):
    name: Optional[str] = None
    price: Optional[Union[str, float]] = None
    usd: Optional[str] = None
    total: int = 0
    features: List[str] = []

class CreateEventReq(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    image: Optional[str] = None
    date: Optional[str] = None
    end_date: Optional[str] = None
    venue: Optional[str] = None
    location: Optional[str] = None
    ticket_tiers: Optional[List[TierReq]] = None
    organizer_address: Optional[str] = None
    royalty_percentage: Optional[Union[float, str]] = None

class PurchaseReq(CamelModel):
    event_id: Optional[str] = None
    tier_name: Optional[str] = None
    participant_count: Optional[int] = None

class MetadataReq(CamelModel):
    event_id: Optional[str] = None
    event_name: Optional[str] = None
    tier_name: Optional[str] = None
    time: Optional[str] = None
    location: Optional[str] = None
    attendees: Optional[int] = None
    image_url: Optional[str] = None
    participant_count: Optional[int] = None
    extra: Optional[Any] = None

class VerifyTicketReq(CamelModel):
    token_id: Optional[Union[str, int]] = None


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _bearer(authorization: Optional[str]) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise InvalidSession("bearer token required")
    return authorization.split(" ", 1)[1].strip()


def _session_address(request: Request) -> str:
    token = _bearer(request.headers.get("authorization"))
    try:
        payload = verify_session_token(token, request.app.state.settings.session_secret)
    except ValueError as e:
        raise InvalidSession(f"session rejected: {e}")
    return payload["sub"]


async def _limit_auth(request: Request) -> None:
    s: Settings = request.app.state.settings
    allowed = await token_bucket(
        request.app.state.redis,
        key=f"auth:{_client_ip(request)}",
        capacity=s.auth_rate_limit_per_min,
        refill_per_sec=s.auth_rate_limit_per_min / 60,
    )
    if not allowed:
        raise RateLimited()


# --- Auth ---
@router.post("/auth/nonce")
async def request_nonce(req: NonceReq, request: Request):
    await _limit_auth(request)
    nonce = await request.app.state.challenges.issue_nonce(req.address)
    return {"nonce": nonce}

@router.post("/auth/verify")
async def verify_login(req: VerifyReq, request: Request):
    await _limit_auth(request)
    s: Settings = request.app.state.settings
    address = await request.app.state.challenges.verify(req.address, req.signature)
    token = mint_session_token(address, s.session_secret, ttl_minutes=s.session_ttl_minutes)
    return {"ok": True, "address": address, "token": token}

@router.get("/auth/session")
def current_session(request: Request):
    return {"ok": True, "address": _session_address(request)}


# --- Events ---
@router.post("/events")
def create_event(req: CreateEventReq, request: Request):
    if request.app.state.settings.require_session_for_events:
        owner = _session_address(request)
        if not req.organizer_address or normalize_address(req.organizer_address) != owner:
            raise InvalidSession("session does not match organizerAddress")
    return request.app.state.ledger.create_event(req.model_dump(by_alias=True))

@router.get("/events")
def list_events(request: Request):
    return request.app.state.ledger.list_events()

@router.get("/events/organizer/{address}")
def organizer_events(address: str, request: Request):
    return request.app.state.ledger.list_by_organizer(address)

@router.get("/events/{event_id}")
def get_event(event_id: str, request: Request):
    return request.app.state.ledger.get_event(event_id)


# --- Tickets ---
@router.post("/tickets/purchase")
async def purchase_ticket(
    req: PurchaseReq,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    state = request.app.state
    decision_id = str(uuid.uuid4())
    ip = _client_ip(request)
    ua = request.headers.get("user-agent", "")

    # Idempotency: one in-flight request per key, later ones replay its response
    if idempotency_key:
        ttl = state.settings.idempotency_ttl_seconds
        if not await claim(state.redis, "purchase", idempotency_key, ttl_seconds=ttl):
            cached = await get_cached_response(state.redis, "purchase", idempotency_key)
            if cached:
                return cached
            raise PurchaseInProgress()

    try:
        result = await run_in_threadpool(
            state.ledger.purchase, req.event_id, req.tier_name, req.participant_count
        )
    except Exception as e:
        if idempotency_key:
            await release(state.redis, "purchase", idempotency_key)
        if isinstance(e, TicketingError):
            await run_in_threadpool(
                write_audit, state.sessions, decision_id, ip, ua, req.event_id, req.tier_name, "REJECTED", e.reason_code
            )
        raise

    resp = {"success": True, **result}
    if idempotency_key:
        await set_cached_response(
            state.redis, "purchase", idempotency_key, resp, ttl_seconds=state.settings.idempotency_ttl_seconds
        )
    await run_in_threadpool(
        write_audit, state.sessions, decision_id, ip, ua, req.event_id, req.tier_name, "ACCEPTED", "OK"
    )
    return resp

@router.post("/metadata")
def create_metadata(req: MetadataReq, request: Request):
    return request.app.state.tickets.create_metadata(req.model_dump(by_alias=True))

@router.get("/metadata/{token_id}")
def get_metadata(token_id: str, request: Request):
    return request.app.state.tickets.get_metadata(token_id)

@router.post("/verify-ticket")
def verify_ticket(req: VerifyTicketReq, request: Request):
    state = request.app.state
    decision_id = str(uuid.uuid4())
    ip = _client_ip(request)
    ua = request.headers.get("user-agent", "")
    token_id = None if req.token_id is None else str(req.token_id)
    try:
        resp = state.tickets.redeem(token_id)
    except TicketingError as e:
        write_audit(state.sessions, decision_id, ip, ua, None, token_id, "REJECTED", e.reason_code)
        raise
    write_audit(state.sessions, decision_id, ip, ua, resp["ticket"]["eventId"], token_id, "ACCEPTED", "OK")
    return resp

@router.get("/health")
def health():
    return {"ok": True}


# --- Error mapping ---
async def _ticketing_error(request: Request, exc: TicketingError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s", exc.reason_code, request.method, request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.message, "reason_code": exc.reason_code},
    )

async def _validation_error(request: Request, exc: RequestValidationError):
    fields = sorted({".".join(str(p) for p in err["loc"][1:]) or "body" for err in exc.errors()})
    return await _ticketing_error(request, InvalidInput(f"invalid fields: {', '.join(fields)}"))

async def _persistence_error(request: Request, exc: SQLAlchemyError):
    logger.error("database failure on %s %s", request.method, request.url.path, exc_info=exc)
    return await _ticketing_error(request, TicketingError())


def create_app(
    settings: Optional[Settings] = None,
    redis: Optional[Redis] = None,
    session_factory: Optional[sessionmaker] = None,
) -> FastAPI:
    """Build the API with its stores wired in.

    Run with ``uvicorn quantum_pass.main:create_app --factory``. Tests pass
    their own Redis client and session factory.
    """
    settings = settings or load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    if session_factory is None:
        engine = make_engine(settings.database_url)
        init_db(engine)
        session_factory = make_session_factory(engine)
    if redis is None:
        redis = Redis.from_url(settings.redis_url, decode_responses=True)

    app = FastAPI(title="Quantum Pass", version="1.0.0")
    app.state.settings = settings
    app.state.redis = redis
    app.state.sessions = session_factory
    app.state.challenges = ChallengeManager(redis, ttl_seconds=settings.nonce_ttl_seconds)
    app.state.ledger = InventoryLedger(session_factory)
    app.state.tickets = TicketRegistry(session_factory, base_url=settings.base_url)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.frontend_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Idempotency-Key"],
    )
    app.add_exception_handler(TicketingError, _ticketing_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(SQLAlchemyError, _persistence_error)

    app.include_router(router)
    app.include_router(admin_router)
    logger.info("Quantum Pass API ready (db=%s)", settings.database_url)
    return app
