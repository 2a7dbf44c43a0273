from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import Callable

from fastapi import Body, Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from hue_mirror.actions import ActionDispatcher, state_item
from hue_mirror.config import AppConfig
from hue_mirror.hue_client import HueClient
from hue_mirror.reconciler import Reconciler
from hue_mirror.schemas import (
    ActionRequest,
    ActionResponse,
    HealthResponse,
    ReadinessResponse,
    StatesResponse,
    UnauthorizedResponse,
)
from hue_mirror.security import AuthContext, require_auth
from hue_mirror.tree import ObjectTree


BOOTSTRAP_INTERVAL_SECONDS = 2.0


@dataclass
class AppState:
    config: AppConfig
    tree: ObjectTree
    hue: HueClient
    dispatcher: ActionDispatcher
    reconciler: Reconciler
    tasks: list[asyncio.Task]


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = AppConfig.from_env()
    tree = ObjectTree(db_path=config.db_path)
    await tree.connect()

    bridge_host = config.bridge_host or await tree.get_setting("bridge_host")
    bridge_user = config.bridge_user or await tree.get_setting("bridge_user")
    config = replace(config, bridge_host=bridge_host, bridge_user=bridge_user)

    if config.bridge_host:
        await tree.set_setting("bridge_host", config.bridge_host)
    if config.bridge_user:
        await tree.set_setting("bridge_user", config.bridge_user)

    hue = HueClient(
        bridge_host=config.bridge_host,
        username=config.bridge_user,
        port=config.bridge_port,
        ssl=config.bridge_ssl,
        retry_max_attempts=config.retry_max_attempts,
        retry_base_delay_ms=config.retry_base_delay_ms,
    )
    dispatcher = ActionDispatcher(tree=tree, hue=hue, config=config)
    reconciler = Reconciler(config=config, hue=hue, tree=tree)

    tasks: list[asyncio.Task] = []
    app.state.state = AppState(
        config=config,
        tree=tree,
        hue=hue,
        dispatcher=dispatcher,
        reconciler=reconciler,
        tasks=tasks,
    )

    async def bootstrap_loop() -> None:
        started = False
        while True:
            # Env (already in config) wins; the settings table is the fallback.
            host_now = config.bridge_host or await tree.get_setting("bridge_host")
            user_now = config.bridge_user or await tree.get_setting("bridge_user")

            if host_now != hue.bridge_host or user_now != hue.username:
                if started:
                    await reconciler.stop()
                    started = False
                await hue.configure(bridge_host=host_now, username=user_now)

            if not started and host_now and user_now:
                started = True
                await reconciler.start()

            await asyncio.sleep(BOOTSTRAP_INTERVAL_SECONDS)

    tasks.append(asyncio.create_task(bootstrap_loop()))
    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except BaseException:
                pass
        await reconciler.stop()
        await hue.close()
        await tree.close()


app = FastAPI(
    title="Hue Mirror",
    version="0.1.0",
    description=(
        "# Hue Mirror API\n\n"
        "Mirrors the lights, groups, sensors and scenes of one Hue Bridge into a local state tree.\n\n"
        "## Auth\n"
        "When `GATEWAY_AUTH_TOKENS` or `GATEWAY_API_KEYS` is set, `/v1/*` endpoints require one of:\n\n"
        "- `Authorization: Bearer <token>`\n"
        "- `X-API-Key: <key>`\n\n"
        "## Endpoints\n"
        "- `GET /healthz` liveness\n"
        "- `GET /readyz` readiness (bridge host + user + connected)\n"
        "- `POST /v1/actions` single action endpoint (`bridge.discover`, `bridge.create_user`, `state.get`, `state.set`)\n"
        "- `GET /v1/states` mirrored states by id prefix\n"
    ),
    lifespan=lifespan,
)

logger = logging.getLogger("hue_mirror")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    code = "invalid_request"
    message = "Request validation failed"
    details: dict = {"errors": [{"loc": list(err.get("loc", ())), "msg": str(err.get("msg", ""))} for err in exc.errors()]}
    for err in exc.errors():
        if err.get("type") == "json_invalid":
            code = "invalid_json"
            message = "Request body must be valid JSON"
            details = {"error": str(err.get("msg", "invalid json"))}
            break
        if err.get("type") == "union_tag_invalid":
            code = "unknown_action"
            message = "Unknown action"
            break

    payload = {
        "requestId": request.headers.get("x-request-id"),
        "action": "",
        "ok": False,
        "error": {"code": code, "message": message, "details": details},
    }
    return JSONResponse(payload, status_code=status.HTTP_400_BAD_REQUEST)


@app.middleware("http")
async def access_log(request: Request, call_next: Callable[[Request], Response]):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s -> %s (%.1f ms) request_id=%s",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
        request.headers.get("x-request-id", ""),
    )
    return response


@app.get("/healthz", summary="Liveness check", response_model=HealthResponse, tags=["meta"])
async def healthz() -> HealthResponse:
    return {"ok": True}


@app.get(
    "/readyz",
    summary="Readiness check",
    description="Ready once a bridge host and user are known and the mirror is connected.",
    response_model=ReadinessResponse,
    tags=["meta"],
)
async def readyz() -> ReadinessResponse:
    state: AppState = app.state.state
    if not state.hue.bridge_host:
        return JSONResponse({"ready": False, "reason": "missing_bridge_host"}, status_code=503)
    if not state.hue.username:
        return JSONResponse({"ready": False, "reason": "missing_bridge_user"}, status_code=503)
    if not state.reconciler.connected:
        return JSONResponse(
            {"ready": False, "reason": "not_connected", "details": {"state": state.reconciler.state.value}},
            status_code=503,
        )
    return {"ready": True}


@app.post(
    "/v1/actions",
    summary="Single action endpoint",
    response_model=ActionResponse,
    responses={
        400: {"description": "Bad request / invalid JSON / unknown action / invalid args / read-only state."},
        401: {"description": "Unauthorized.", "model": UnauthorizedResponse},
        404: {"description": "Unknown state id."},
        409: {"description": "Link button not pressed."},
        424: {"description": "Bridge unreachable."},
        502: {"description": "Bridge returned an error."},
        500: {"description": "Internal server error."},
    },
    tags=["actions"],
)
async def actions(
    payload: ActionRequest = Body(
        ...,
        openapi_examples={
            "bridge_create_user": {
                "summary": "Pair after pressing the Hue Bridge button",
                "value": {"action": "bridge.create_user", "args": {"address": "192.168.1.29"}},
            },
            "state_set": {
                "summary": "Switch a light on",
                "value": {"action": "state.set", "args": {"id": "Lamp.on", "val": True}},
            },
        },
    ),
    auth: AuthContext = Depends(require_auth),
) -> ActionResponse:
    state: AppState = app.state.state
    response = await state.dispatcher.dispatch(payload=payload.model_dump(), auth=auth)
    return JSONResponse(response.body, status_code=response.status_code)


@app.get(
    "/v1/states",
    summary="List mirrored states",
    response_model=StatesResponse,
    responses={401: {"description": "Unauthorized.", "model": UnauthorizedResponse}},
    tags=["states"],
)
async def states(
    prefix: str = Query("", description="Only states whose id starts with this prefix."),
    _: AuthContext = Depends(require_auth),
) -> StatesResponse:
    state: AppState = app.state.state
    found = await state.tree.get_states(prefix)
    return {"items": [state_item(state_id, found[state_id]) for state_id in sorted(found)]}
