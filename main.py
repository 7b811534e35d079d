"""
Relay - Webhook Memory API Server
=================================

FastAPI server for the webhook relay. It provides:
1. Chat webhook intake - stores the conversation and forwards the event
2. User profile lookup and upsert over Redis (short-term) + PostgreSQL (long-term)
3. Conversation memory access for automation tools (n8n and similar)

ROUTES:
- GET  /                     liveness text
- GET  /health               store connectivity
- POST /webhook/whatsapp     inbound chat message (JSON or form-encoded)
- GET  /user/{phone}         cache-aside user lookup          (API key)
- POST /user                 write-through user upsert        (API key)
- GET  /session/{session_id} conversation memory               (API key)
- POST /ask-model            memory + prompt for a model call

Store clients are created once in the lifespan handler and shared by every
request. `create_app()` accepts ready-made stores so tests can inject fakes.

Run with: python main.py   (or: uvicorn main:app)
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
from fastapi import Body, Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from auth import require_api_key
from errors import StoreError, ValidationError
from memory_manager import ConversationMemory, MemoryResolver
from notifier import OutboundNotifier
from relay_engine import RelayEngine
from settings import Settings, get_settings
from stores import InMemoryStore, PostgresUserStore, RedisStore

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="[%(asctime)s] %(levelname)s - %(message)s",
)
logger = logging.getLogger("relay")


# ---------- Lifespan: process-wide clients ----------
@asynccontextmanager
async def lifespan(app: FastAPI):
    state = app.state
    settings: Settings = state.settings
    closers = []

    volatile = state.volatile
    if volatile is None:
        if settings.use_memory_cache:
            volatile = InMemoryStore()
            logger.info("Volatile store: in-process memory (CACHE_BACKEND=memory)")
        else:
            volatile = RedisStore.from_url(settings.redis_url)
        closers.append(volatile.close)

    durable = state.durable
    if durable is None:
        durable = PostgresUserStore.connect(settings.pg_config, maxconn=settings.pg_pool_max)
        await durable.ensure_schema()
        closers.append(durable.close)

    http_client = state.http_client
    if http_client is None:
        http_client = httpx.AsyncClient(timeout=settings.notify_timeout_seconds)
        closers.append(http_client.aclose)

    state.volatile = volatile
    state.durable = durable
    state.resolver = MemoryResolver(volatile, durable, cache_ttl_seconds=settings.user_cache_ttl_seconds)
    state.conversations = ConversationMemory(
        volatile,
        ttl_seconds=settings.session_ttl_seconds,
        atomic_append=settings.session_atomic_append,
    )
    state.notifier = OutboundNotifier(http_client, settings.automation_webhook_url)
    state.relay = RelayEngine(state.resolver, state.conversations, state.notifier)
    logger.info("Relay server ready (automation webhook %s)",
                "enabled" if state.notifier.enabled else "disabled")

    try:
        yield
    finally:
        for close in reversed(closers):
            await close()
        logger.info("Relay server stopped")


class AskModelRequest(BaseModel):
    """Body of POST /ask-model."""
    sessionId: Optional[str] = None
    prompt: Optional[str] = None


# ---------- Request-scoped accessors ----------
def get_resolver(request: Request) -> MemoryResolver:
    return request.app.state.resolver


def get_conversations(request: Request) -> ConversationMemory:
    return request.app.state.conversations


def get_relay(request: Request) -> RelayEngine:
    return request.app.state.relay


async def _read_payload(request: Request) -> Dict[str, Any]:
    """Webhook body as a dict, whether it was posted as form fields or JSON."""
    content_type = request.headers.get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form = await request.form()
        return dict(form)
    try:
        data = await request.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def create_app(
    settings: Optional[Settings] = None,
    volatile=None,
    durable=None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(title="Webhook Memory Relay", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.volatile = volatile
    app.state.durable = durable
    app.state.http_client = http_client
    app.dependency_overrides[get_settings] = lambda: settings

    # ---------- Error mapping ----------
    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(StoreError)
    async def _store_error(request: Request, exc: StoreError):
        logger.error("Store error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})

    # ---------- Routes ----------
    @app.get("/", response_class=PlainTextResponse)
    def root():
        return "Relay server running!"

    @app.get("/health")
    async def health(request: Request):
        redis_ok = await request.app.state.volatile.ping()
        postgres_ok = await request.app.state.durable.ping()
        return {"status": "ok", "redis": redis_ok, "postgres": postgres_ok}

    @app.post("/webhook/whatsapp")
    async def whatsapp_webhook(request: Request, relay: RelayEngine = Depends(get_relay)):
        try:
            payload = await _read_payload(request)
            result = await relay.handle_inbound(payload)
            logger.info("Webhook handled: session=%s profile_updated=%s notified=%s",
                        result.session_id, result.profile_updated, result.notified)
            return PlainTextResponse("OK", status_code=200)
        except ValidationError as e:
            logger.warning("Webhook rejected: %s", e)
            return PlainTextResponse(str(e), status_code=400)
        except Exception as e:
            logger.exception("Webhook processing failed: %s", e)
            return PlainTextResponse("ERR", status_code=500)

    @app.get("/user/{phone}", dependencies=[Depends(require_api_key)])
    async def get_user(phone: str, resolver: MemoryResolver = Depends(get_resolver)):
        resolved = await resolver.get_user(phone)
        if resolved is None:
            return {"data": None, "source": None}
        return {"data": resolved.record.to_dict(), "source": resolved.source.value}

    @app.post("/user", dependencies=[Depends(require_api_key)])
    async def upsert_user(
        payload: Dict[str, Any] = Body(...),
        resolver: MemoryResolver = Depends(get_resolver),
    ):
        record = await resolver.upsert_user(payload)
        return {"data": record.to_dict()}

    @app.get("/session/{session_id}", dependencies=[Depends(require_api_key)])
    async def get_session(session_id: str, conversations: ConversationMemory = Depends(get_conversations)):
        memory = await conversations.get_memory(session_id)
        return {"sessionId": session_id, "memory": memory}

    @app.post("/ask-model")
    async def ask_model(
        request_body: AskModelRequest,
        conversations: ConversationMemory = Depends(get_conversations),
    ):
        if not settings.openai_api_key:
            return JSONResponse(status_code=400, content={"error": "no OPENAI_API_KEY"})
        session_id = request_body.sessionId or ""
        memory = await conversations.get_memory(session_id) if session_id else []
        return {"memory": memory, "prompt": request_body.prompt}

    return app


app = create_app()


def main():
    """Start the web server."""
    import uvicorn

    settings = get_settings()
    logger.info("Starting relay server at http://%s:%s", settings.host, settings.port)
    uvicorn.run("main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
