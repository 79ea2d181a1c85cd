"""HTTP endpoints for join credentials and the shared channel directory."""

import logging
from typing import Any, Dict, Optional

import pydantic
from aiohttp import web

from .config import BabyfoonConfig
from .errors import (
    BabyfoonError,
    InvalidChannelCodeError,
    StreamNotFoundError,
    ValidationError,
    http_payload_for,
)
from .models.session import Role, SessionRecord, ValidationResult, build_watch_link, is_valid_channel_code
from .models.token import TokenRequest, TokenResponse
from .services.directory import ChannelDirectory
from .tokens.service import TokenService

logger = logging.getLogger(__name__)

TOKEN_SERVICE_KEY = web.AppKey("token_service", TokenService)
DIRECTORY_KEY = web.AppKey("channel_directory", ChannelDirectory)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,POST,DELETE,OPTIONS",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


@web.middleware
async def cors_middleware(request: web.Request, handler):
    if request.method == "OPTIONS":
        response = web.Response(status=204)
    else:
        response = await handler(request)
    for name, value in CORS_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except BabyfoonError as e:
        if e.http_status >= 500:
            logger.error(f"{request.method} {request.path} failed: {e.detail}")
        else:
            logger.info(f"{request.method} {request.path} rejected: {e.detail}")
        return web.json_response(http_payload_for(e), status=e.http_status)


async def _json_body(request: web.Request, required: bool = True) -> Dict[str, Any]:
    if not required and not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _record_payload(record: SessionRecord) -> Dict[str, Any]:
    return {
        "code": record.code,
        "id": record.record_id,
        "role": record.role.value,
        "createdAt": record.created_at,
        "active": record.active,
    }


def _channel_code(request: web.Request) -> str:
    code = request.match_info["code"]
    if not is_valid_channel_code(code):
        raise InvalidChannelCodeError(f"Invalid code: {code!r}")
    return code


async def generate_token(request: web.Request) -> web.Response:
    """POST /generate-token: issue a join credential."""
    body = await _json_body(request)
    try:
        token_request = TokenRequest.model_validate(body)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid token request: {e.errors()[0]['msg']}")
    try:
        role = Role.from_wire(token_request.role if token_request.role is not None else Role.BROADCASTER.value)
    except ValueError as e:
        raise ValidationError(str(e))

    service = request.app[TOKEN_SERVICE_KEY]
    credential = service.issue_token(token_request.channel_name, token_request.uid or 0, role)
    response = TokenResponse.from_credential(credential)
    return web.json_response(response.model_dump(by_alias=True))


async def free_code(request: web.Request) -> web.Response:
    """GET /codes/free: suggest a code with no active broadcaster."""
    code = request.app[DIRECTORY_KEY].allocate_code()
    return web.json_response({"code": code})


async def create_channel(request: web.Request) -> web.Response:
    """POST /channels: register a broadcaster, allocating a code if none is given."""
    body = await _json_body(request, required=False)
    directory = request.app[DIRECTORY_KEY]
    code = body.get("code") or directory.allocate_code()
    record = directory.register_broadcaster(code)
    payload = _record_payload(record)
    payload["watchLink"] = build_watch_link(record.code)
    return web.json_response(payload, status=201)


async def get_channel(request: web.Request) -> web.Response:
    """GET /channels/{code}: validate a code."""
    code = request.match_info["code"]
    directory = request.app[DIRECTORY_KEY]
    result = directory.validate(code)
    if result is ValidationResult.INVALID_FORMAT:
        raise InvalidChannelCodeError(f"Invalid code: {code!r}")
    if result is ValidationResult.NOT_FOUND:
        raise StreamNotFoundError(f"No active broadcaster for {code}")
    record = directory.get(code)
    payload = _record_payload(record)
    payload["listeners"] = directory.listener_count(code)
    return web.json_response(payload)


async def delete_channel(request: web.Request) -> web.Response:
    """DELETE /channels/{code}: deactivate a channel (idempotent)."""
    request.app[DIRECTORY_KEY].deactivate(_channel_code(request))
    return web.Response(status=204)


async def add_listener(request: web.Request) -> web.Response:
    """POST /channels/{code}/listeners: attach an audience record."""
    record = request.app[DIRECTORY_KEY].attach_listener(_channel_code(request))
    return web.json_response(_record_payload(record), status=201)


async def remove_listener(request: web.Request) -> web.Response:
    """DELETE /channels/{code}/listeners?id=...: detach an audience record."""
    code = _channel_code(request)
    record_id = request.query.get("id")
    if not record_id:
        raise ValidationError("Listener id is required")
    directory = request.app[DIRECTORY_KEY]
    record = directory.find_listener(code, record_id)
    if record is not None:
        directory.detach_listener(record)
    return web.Response(status=204)


def create_app(token_service: TokenService, directory: Optional[ChannelDirectory] = None) -> web.Application:
    """Build the aiohttp application serving tokens and the directory."""
    app = web.Application(middlewares=[cors_middleware, error_middleware])
    app[TOKEN_SERVICE_KEY] = token_service
    app[DIRECTORY_KEY] = directory if directory is not None else ChannelDirectory()

    app.router.add_post("/generate-token", generate_token)
    app.router.add_get("/codes/free", free_code)
    app.router.add_post("/channels", create_channel)
    app.router.add_get("/channels/{code}", get_channel)
    app.router.add_delete("/channels/{code}", delete_channel)
    app.router.add_post("/channels/{code}/listeners", add_listener)
    app.router.add_delete("/channels/{code}/listeners", remove_listener)
    return app


def run_server(config: BabyfoonConfig) -> None:
    """Serve the token and directory endpoints until interrupted."""
    token_service = TokenService.from_config(config)
    if not token_service.is_configured:
        logger.warning("Token credentials are not configured; /generate-token will answer 500")

    host = config.get('server.host', '127.0.0.1')
    port = int(config.get('server.port', 8080))
    app = create_app(token_service, ChannelDirectory())
    logger.info(f"Serving token and directory endpoints on http://{host}:{port}")
    web.run_app(app, host=host, port=port, print=None)
