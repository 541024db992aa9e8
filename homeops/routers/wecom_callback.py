from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from homeops.logging_config import get_logger, message_context
from homeops.services.callback_service import ERROR_STATUS, open_envelope, verify_echo
from homeops.services.crypto import WeComCrypto
from homeops.services.deduper import Deduper, callback_dedupe_key
from homeops.services.router import Router

logger = get_logger("wecom_callback")

router = APIRouter()

ACK_TEXT = "success"
DEFAULT_MAX_BODY_BYTES = 1 << 20


@dataclass
class CallbackDeps:
    crypto: WeComCrypto
    router: Router
    deduper: Optional[Deduper] = None
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES


class BodyTooLarge(Exception):
    pass


def get_callback_deps(request: Request) -> CallbackDeps:
    return request.app.state.callback_deps


async def read_limited_body(request: Request, max_bytes: int) -> bytes:
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise BodyTooLarge()

    chunks = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > max_bytes:
            raise BodyTooLarge()
        chunks.append(chunk)
    return b"".join(chunks)


@router.get("/wecom/callback", response_class=PlainTextResponse)
async def verify_callback_url(
    msg_signature: str = "",
    timestamp: str = "",
    nonce: str = "",
    echostr: str = "",
    deps: CallbackDeps = Depends(get_callback_deps),
):
    """Ownership challenge sent by WeCom when the callback URL is saved."""
    result = verify_echo(deps.crypto, msg_signature, timestamp, nonce, echostr)
    if not result.ok:
        logger.warning("Callback verification rejected", extra={"context": {"reason": result.error_code}})
        return PlainTextResponse(result.error_code, status_code=ERROR_STATUS[result.error_code])
    return PlainTextResponse(result.value.decode("utf-8", errors="replace"))


@router.post("/wecom/callback", response_class=PlainTextResponse)
async def handle_callback(
    request: Request,
    msg_signature: str = "",
    timestamp: str = "",
    nonce: str = "",
    deps: CallbackDeps = Depends(get_callback_deps),
):
    """
    Handle an encrypted WeCom callback:
    - verify + decrypt the envelope (403/400 on failure)
    - drop retried deliveries
    - dispatch through the router; always ack with 200 so WeCom does not retry
    """
    max_bytes = deps.max_body_bytes if deps.max_body_bytes > 0 else DEFAULT_MAX_BODY_BYTES
    try:
        body = await read_limited_body(request, max_bytes)
    except BodyTooLarge:
        return PlainTextResponse("payload too large", status_code=413)

    result = open_envelope(deps.crypto, msg_signature, timestamp, nonce, body)
    if not result.ok:
        logger.warning(
            f"Callback rejected: {result.error}",
            extra={"context": {"reason": result.error_code}},
        )
        return PlainTextResponse(result.error_code, status_code=ERROR_STATUS[result.error_code])

    msg = result.value.message
    context = message_context(msg)

    key = callback_dedupe_key(msg, result.value.plain)
    if deps.deduper is not None and key and deps.deduper.seen_or_mark(key):
        logger.info("Duplicate callback ignored", extra={"context": context})
        return PlainTextResponse(ACK_TEXT)

    try:
        await run_in_threadpool(deps.router.handle_message, msg)
    except Exception as e:
        logger.error(f"Callback dispatch failed (not retried): {e}", exc_info=True, extra={"context": context})

    return PlainTextResponse(ACK_TEXT)
