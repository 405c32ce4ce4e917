"""HTTP-triggered ask-gpt function.

Endpoint:
    POST /functions/v1/ask-gpt

Request:  {"message": "<text>"}  with ``Authorization: Bearer <token>``
Response: {"reply": "<text>"}
Errors:   {"error": "<reason>"} with a non-2xx status
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from chatnest.auth.dependencies import bearer_token
from chatnest.store.service import ChatStore

from .provider import CompletionError, get_provider

logger = logging.getLogger(__name__)

ASK_GPT_PATH = "/functions/v1/ask-gpt"

router = APIRouter(tags=["ai"])


@router.post(ASK_GPT_PATH)
async def ask_gpt(request: Request, authorization: Optional[str] = Header(None)) -> JSONResponse:
    """Send one user message to the completion provider and return its reply.

    Returns:
        JSONResponse {"reply": ...} on success.
        400 if the body is not JSON or ``message`` is not a non-blank string.
        401 without a valid bearer token.
        503 when no provider is configured.
        Upstream status (or 502) when the provider fails.
    """
    token = bearer_token(authorization)
    if token is None or ChatStore.get_instance().resolve_session(token) is None:
        return JSONResponse({"error": "Not authenticated"}, status_code=401)

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return JSONResponse({"error": "Invalid JSON"}, status_code=400)

    message = body.get("message") if isinstance(body, dict) else None
    if not isinstance(message, str) or not message.strip():
        return JSONResponse({"error": "Invalid message"}, status_code=400)

    provider = get_provider()
    if provider is None:
        return JSONResponse({"error": "AI is not configured"}, status_code=503)

    try:
        reply = await provider.complete(message)
    except CompletionError as e:
        return JSONResponse({"error": str(e)}, status_code=e.status_code)
    except Exception as e:
        logger.exception("[AI] ask-gpt failed")
        return JSONResponse({"error": str(e)}, status_code=500)

    logger.info("[AI] Reply generated (%d chars)", len(reply))
    return JSONResponse({"reply": reply})
