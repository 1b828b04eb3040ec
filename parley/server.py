"""HTTP gateway for the conversation service.

Thin mapping over the manager and coordinator: validate input, dispatch,
translate ParleyError subclasses into status codes. No business logic here.
"""

from __future__ import annotations

import json
import logging

from aiohttp import web

from parley.config import ConfigCoordinator
from parley.errors import ParleyError, ValidationError
from parley.manager import ConversationManager

log = logging.getLogger("server")


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except ParleyError as e:
        if e.status >= 500:
            log.error(f"{request.method} {request.path} failed: {e}")
        return web.json_response({"error": str(e)}, status=e.status)
    except web.HTTPException:
        raise
    except Exception:
        log.exception(f"Unhandled error in {request.method} {request.path}")
        return web.json_response({"error": "Internal server error"}, status=500)


async def _read_json(request: web.Request) -> dict:
    if not request.can_read_body:
        return {}
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def create_app(manager: ConversationManager, coordinator: ConfigCoordinator) -> web.Application:
    """Build the aiohttp application.

    Exposes:
      POST   /conversation                  {kind}     -> {conversationId}
      GET    /conversation                             -> {conversations}
      DELETE /conversation/{id}                        -> {status: closed}
      POST   /conversation/{id}/message     {message}  -> {status: completed, response}
      GET    /config                                   -> {headless, version}
      PUT    /config                        {headless} -> {status: updated}
      POST   /service/stop                             -> {status: stopped}
    """
    app = web.Application(middlewares=[error_middleware])

    async def open_conversation(request: web.Request) -> web.Response:
        body = await _read_json(request)
        # "service" is what older clients send.
        kind = body.get("kind", body.get("service"))
        conversation_id = await manager.open_conversation(kind)
        return web.json_response({"conversationId": conversation_id})

    async def list_conversations(request: web.Request) -> web.Response:
        return web.json_response(
            {"conversations": [c.to_dict() for c in manager.list_conversations()]}
        )

    async def close_conversation(request: web.Request) -> web.Response:
        await manager.close_conversation(request.match_info["id"])
        return web.json_response({"status": "closed"})

    async def send_message(request: web.Request) -> web.Response:
        conversation_id = request.match_info["id"]
        body = await _read_json(request)
        message = body.get("message")
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("Message is required")
        response = await manager.send_message(conversation_id, message)
        return web.json_response({"status": "completed", "response": response})

    async def get_config(request: web.Request) -> web.Response:
        return web.json_response(coordinator.config.to_dict())

    async def update_config(request: web.Request) -> web.Response:
        body = await _read_json(request)
        await coordinator.update_config(body)
        return web.json_response({"status": "updated"})

    async def stop_service(request: web.Request) -> web.Response:
        await coordinator.shutdown()
        return web.json_response({"status": "stopped"})

    app.router.add_post("/conversation", open_conversation)
    app.router.add_get("/conversation", list_conversations)
    app.router.add_delete("/conversation/{id}", close_conversation)
    app.router.add_post("/conversation/{id}/message", send_message)
    app.router.add_get("/config", get_config)
    app.router.add_put("/config", update_config)
    app.router.add_post("/service/stop", stop_service)
    return app


async def start_server(
    app: web.Application,
    *,
    host: str = "127.0.0.1",
    port: int = 3001,
) -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host=host, port=port)
    await site.start()
    return runner
