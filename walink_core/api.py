"""HTTP control plane for the session controller.

Every handler is a thin translation of one controller operation into a JSON
response. Authentication and error mapping live in middlewares so handlers
only deal with the happy path and with request validation.
"""

from __future__ import annotations

import json
import logging
import secrets
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web
from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError
from pydantic import field_validator, model_validator

from .client import MEDIA_KINDS, OutgoingMessage, normalize_recipient
from .controller import PairingResultKind, SessionController
from .errors import DeliveryFailed, NotConnected, SessionError
from .pairing import decode_data_url
from .state import SessionStatus

_LOGGER = logging.getLogger(__name__)

CONTROLLER_KEY = web.AppKey("controller", SessionController)
AUTH_TOKEN_KEY = web.AppKey("auth_token", str)

PUBLIC_PATHS = frozenset({"/status", "/health/live", "/health/ready"})

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


class SendRequest(BaseModel):
    """Body of ``POST /send``."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    to: str = Field(min_length=1)
    message: str | None = None
    media_url: str | None = None
    media_kind: str = "image"
    mimetype: str | None = None
    caption: str | None = None

    @field_validator("to")
    @classmethod
    def _valid_recipient(cls, value: str) -> str:
        normalize_recipient(value)
        return value

    @field_validator("media_kind")
    @classmethod
    def _known_kind(cls, value: str) -> str:
        if value not in MEDIA_KINDS:
            raise ValueError(f"media_kind must be one of {sorted(MEDIA_KINDS)}")
        return value

    @model_validator(mode="after")
    def _one_content(self) -> SendRequest:
        if not self.message and not self.media_url:
            raise ValueError("Either message or media_url is required")
        if self.message and self.media_url:
            raise ValueError("message and media_url are mutually exclusive")
        return self

    def to_message(self) -> OutgoingMessage:
        if self.media_url:
            return OutgoingMessage(
                media_url=self.media_url,
                media_kind=self.media_kind,
                mimetype=self.mimetype,
                caption=self.caption,
            )
        return OutgoingMessage(text=self.message)


class AutoReconnectRequest(BaseModel):
    """Body of ``POST /auto-reconnect``."""

    enabled: StrictBool


def _fail(status: int, message: str, **extra: Any) -> web.Response:
    payload = {"status": "error" if status >= 500 else "fail", "message": message}
    payload.update(extra)
    return web.json_response(payload, status=status)


def _validation_message(err: ValidationError) -> str:
    first = err.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "Invalid request body")
    return f"{location}: {message}" if location else message


async def _read_json(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as err:
        raise web.HTTPBadRequest(
            text=json.dumps({"status": "fail", "message": "Body must be valid JSON"}),
            content_type="application/json",
        ) from err
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(
            text=json.dumps({"status": "fail", "message": "Body must be a JSON object"}),
            content_type="application/json",
        )
    return body


# -----------------------------------------------------------------------------
# Middlewares
# -----------------------------------------------------------------------------


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPNotFound:
        return _fail(404, f"Cannot find {request.path} on this server")
    except web.HTTPException:
        raise
    except NotConnected as err:
        return _fail(409, str(err))
    except DeliveryFailed as err:
        return _fail(500, f"Failed to send message: {err}")
    except SessionError as err:
        _LOGGER.error("%s %s failed: %s", request.method, request.path, err)
        return _fail(500, str(err))
    except Exception as err:
        _LOGGER.exception("Unhandled error on %s %s: %s", request.method, request.path, err)
        return _fail(500, "Internal Server Error")


@web.middleware
async def auth_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    if request.path in PUBLIC_PATHS:
        return await handler(request)

    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return _fail(401, "Missing or malformed Authorization header")
    if not secrets.compare_digest(
        token.strip().encode(), request.app[AUTH_TOKEN_KEY].encode()
    ):
        _LOGGER.warning("Rejected request to %s with invalid token", request.path)
        return _fail(403, "Invalid token")
    return await handler(request)


# -----------------------------------------------------------------------------
# Handlers
# -----------------------------------------------------------------------------


async def handle_status(request: web.Request) -> web.Response:
    return web.json_response(request.app[CONTROLLER_KEY].status().as_dict())


async def handle_init(request: web.Request) -> web.Response:
    result = await request.app[CONTROLLER_KEY].init()
    if result.started:
        return web.json_response(
            {"message": "Session initialization started", "status": result.status.value},
            status=202,
        )
    if result.status is SessionStatus.OPEN:
        message = "Session is already connected"
    else:
        message = "Session is already initializing"
    return web.json_response({"message": message, "status": result.status.value})


async def handle_pairing(request: web.Request) -> web.StreamResponse:
    result = request.app[CONTROLLER_KEY].pairing_payload()

    if result.kind is PairingResultKind.READY and result.payload is not None:
        if request.query.get("format") == "png":
            if result.payload.image is None:
                return _fail(404, "Pairing image unavailable")
            body, content_type = decode_data_url(result.payload.image)
            return web.Response(
                body=body,
                content_type=content_type,
                headers={"Cache-Control": "no-store"},
            )
        return web.json_response(result.payload.as_dict())

    if result.kind is PairingResultKind.NOT_NEEDED:
        return web.json_response({"message": "Session is already connected"})
    if result.kind is PairingResultKind.PENDING:
        return web.json_response(
            {"message": "Session is connecting, pairing code will be available soon"},
            status=202,
        )
    return _fail(
        400,
        "Session not initialized. Use POST /init first",
        session=result.status.value,
    )


async def handle_send(request: web.Request) -> web.Response:
    body = await _read_json(request)
    try:
        payload = SendRequest.model_validate(body)
        message = payload.to_message()
    except ValidationError as err:
        return _fail(400, _validation_message(err))
    except ValueError as err:
        return _fail(400, str(err))

    receipt = await request.app[CONTROLLER_KEY].send(payload.to, message)
    return web.json_response(
        {
            "status": "success",
            "data": {"message_id": receipt.message_id, "to": receipt.recipient},
        }
    )


async def handle_reconnect(request: web.Request) -> web.Response:
    result = await request.app[CONTROLLER_KEY].reconnect()
    return web.json_response(
        {"message": "Reconnection process initiated", "status": result.status.value}
    )


async def handle_disconnect(request: web.Request) -> web.Response:
    if not await request.app[CONTROLLER_KEY].disconnect():
        return _fail(400, "Session is already disconnected")
    return web.json_response({"message": "Session disconnected successfully"})


async def handle_auto_reconnect(request: web.Request) -> web.Response:
    body = await _read_json(request)
    try:
        payload = AutoReconnectRequest.model_validate(body)
    except ValidationError as err:
        return _fail(400, _validation_message(err))

    snapshot = await request.app[CONTROLLER_KEY].set_auto_reconnect(payload.enabled)
    return web.json_response(
        {"auto_reconnect_enabled": snapshot.auto_reconnect_enabled}
    )


async def handle_live(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


async def handle_ready(request: web.Request) -> web.Response:
    status = request.app[CONTROLLER_KEY].status().status
    if status is SessionStatus.OPEN:
        return web.json_response({"status": "ready"})
    return web.json_response({"status": "not_ready", "reason": status.value}, status=503)


def create_app(controller: SessionController, *, auth_token: str) -> web.Application:
    """Build the aiohttp application exposing ``controller``."""
    if not auth_token:
        raise ValueError("auth_token is required")

    app = web.Application(middlewares=[error_middleware, auth_middleware])
    app[CONTROLLER_KEY] = controller
    app[AUTH_TOKEN_KEY] = auth_token

    app.router.add_get("/status", handle_status)
    app.router.add_post("/init", handle_init)
    app.router.add_get("/pairing", handle_pairing)
    app.router.add_post("/send", handle_send)
    app.router.add_post("/reconnect", handle_reconnect)
    app.router.add_post("/disconnect", handle_disconnect)
    app.router.add_post("/auto-reconnect", handle_auto_reconnect)
    app.router.add_get("/health/live", handle_live)
    app.router.add_get("/health/ready", handle_ready)
    return app
