"""HTTP facade for sync-bot.

Receives forge webhooks on ``POST /hook``, checks the shared token and the
event type, answers at once and hands the event to the dispatcher as a
background task.
"""

import hmac
import sys
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request
from fastapi.responses import PlainTextResponse

from sync_bot.credentials import CredentialsError

from .config import get_service, get_version
from .events import KNOWN_EVENT_TYPES
from .observability import log_error, log_info, log_warning

app = FastAPI(title="sync-bot webhook")


# ============================================================================
# Startup Validation
# ============================================================================

@app.on_event("startup")
async def validate_webhook_secret():
    """Warn loudly when no webhook secret is configured.

    Without one every delivery is rejected with 401.
    """
    try:
        secret = get_service().webhook_secret()
    except CredentialsError as e:
        log_error(f"Webhook secret unavailable: {e}")
        return
    if not secret:
        log_warning("No webhook secret configured; all deliveries will be rejected")


# ============================================================================
# Helper Functions
# ============================================================================

def verify_token(token: Optional[str], request: Request) -> None:
    """Constant-time comparison of X-Gitee-Token against the webhook secret."""
    try:
        expected = get_service().webhook_secret()
    except CredentialsError as e:
        log_error(f"Webhook secret unavailable: {e}")
        expected = ""
    provided = token or ""
    if not expected or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        client = request.client.host if request.client else "unknown"
        log_error("Authorized failed", remote=client)
        raise HTTPException(
            status_code=401,
            detail="401: Not Authorized",
            headers={"WWW-Authenticate": "Basic realm=Protected Area"},
        )


# ============================================================================
# Endpoints
# ============================================================================

@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "sync-bot",
        "version": get_version(),
        "python": sys.version.split()[0],
    }


@app.post("/hook")
async def hook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_gitee_token: Optional[str] = Header(default=None),
    x_gitee_event: Optional[str] = Header(default=None),
    x_gitee_ping: Optional[str] = Header(default=None),
):
    """Accept one webhook delivery."""
    verify_token(x_gitee_token, request)

    if not x_gitee_event:
        raise HTTPException(status_code=400, detail="400 Bad Request: Missing X-Gitee-Event Header")
    if x_gitee_event not in KNOWN_EVENT_TYPES:
        raise HTTPException(status_code=400, detail="invalid event type")

    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="400 Bad Request: invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="400 Bad Request: JSON object expected")

    if x_gitee_ping == "true":
        log_info("Receive the Ping Event", event_type=x_gitee_event)
    else:
        background_tasks.add_task(get_service().dispatcher.dispatch, x_gitee_event, payload)

    return PlainTextResponse(f"{x_gitee_event}: event received.")


# ============================================================================
# Development Server
# ============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8765)
