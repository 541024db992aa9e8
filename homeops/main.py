import os
import time
from typing import Iterable, Optional

from fastapi import FastAPI, Request

from homeops.config import Settings, load_settings
from homeops.logging_config import get_logger, setup_logging
from homeops.routers import wecom_callback
from homeops.services.card_sender import TemplateCardSender
from homeops.services.crypto import WeComCrypto
from homeops.services.deduper import Deduper
from homeops.services.providers.base import ServiceProvider, WeComSender
from homeops.services.router import Router
from homeops.services.state_store import StateStore
from homeops.services.wecom_service import WeComClient

logger = get_logger("main")


def create_app(
    settings: Optional[Settings] = None,
    providers: Optional[Iterable[ServiceProvider]] = None,
    sender: Optional[WeComSender] = None,
) -> FastAPI:
    """Assemble the callback pipeline: crypto -> deduper -> router -> card-aware sender."""
    settings = settings or load_settings()

    crypto = WeComCrypto(
        token=settings.wecom_token,
        encoding_aes_key=settings.wecom_encoding_aes_key,
        receiver_id=settings.wecom_corp_id,
    )

    client = None
    if sender is None:
        client = WeComClient(
            corp_id=settings.wecom_corp_id,
            agent_id=settings.wecom_agent_id,
            secret=settings.wecom_secret,
            base_url=settings.wecom_api_base_url,
            timeout=settings.http_client_timeout_seconds,
        )
        sender = client

    state_store = StateStore(ttl_seconds=settings.state_ttl_seconds)
    deduper = Deduper(ttl_seconds=settings.dedupe_ttl_seconds)
    card_sender = TemplateCardSender(base=sender, state=state_store, mode=settings.wecom_template_card_mode)

    router = Router(
        sender=card_sender,
        state=state_store,
        allowed_user_ids=settings.allowed_user_id_set,
        providers=providers,
    )

    app = FastAPI(
        title="Home Ops Bot",
        description="WeCom callback pipeline for chat-operated home automation",
        version="0.1.0",
    )
    app.state.settings = settings
    app.state.state_store = state_store
    app.state.deduper = deduper
    app.state.callback_deps = wecom_callback.CallbackDeps(
        crypto=crypto,
        router=router,
        deduper=deduper,
        max_body_bytes=settings.max_body_bytes,
    )
    app.include_router(wecom_callback.router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        logger.info(
            "Request completed",
            extra={
                "context": {
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": int((time.monotonic() - start) * 1000),
                }
            },
        )
        return response

    @app.on_event("shutdown")
    async def close_stores() -> None:
        state_store.close()
        deduper.close()
        if client is not None:
            client.close()
        logger.info("Stores closed")

    @app.get("/health")
    async def health():
        return {"status": "ok", "providers": [p.key() for p in router.providers]}

    logger.info(
        "App assembled",
        extra={
            "context": {
                "providers": [p.key() for p in router.providers],
                "allowed_users": len(router.allowed_user_ids),
                "template_card_mode": card_sender.mode.value,
            }
        },
    )
    return app


def build_app() -> FastAPI:
    """Entry point for `uvicorn homeops.main:build_app --factory`.

    HOMEOPS_CONFIG may point at a YAML file layered over the environment.
    """
    settings = load_settings(os.environ.get("HOMEOPS_CONFIG"))
    setup_logging(settings.log_level)
    return create_app(settings)
