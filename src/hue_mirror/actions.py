from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from hue_mirror.config import AppConfig
from hue_mirror.hue_client import HueApiError, HueClient, HueTransportError, HueUpstreamError
from hue_mirror.security import AuthContext
from hue_mirror.tree import ObjectTree, State


logger = logging.getLogger(__name__)

DEFAULT_DEVICETYPE = "hue-mirror#docker"


@dataclass(frozen=True)
class ActionHTTPResponse:
    status_code: int
    body: dict[str, Any]


class ActionError(Exception):
    def __init__(
        self,
        *,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}


Handler = Callable[[str | None, dict[str, Any], AuthContext], Awaitable[dict[str, Any]]]
HueFactory = Callable[..., HueClient]


def state_item(state_id: str, state: State) -> dict[str, Any]:
    return {"id": state_id, "val": state.val, "ack": state.ack, "ts": state.ts}


class ActionDispatcher:
    def __init__(
        self,
        *,
        tree: ObjectTree,
        hue: HueClient,
        config: AppConfig,
        hue_factory: HueFactory = HueClient,
    ) -> None:
        self.tree = tree
        self.hue = hue
        self.config = config
        self._hue_factory = hue_factory
        self._handlers: dict[str, Handler] = {
            "bridge.discover": self._bridge_discover,
            "bridge.create_user": self._bridge_create_user,
            "state.get": self._state_get,
            "state.set": self._state_set,
        }

    async def dispatch(self, *, payload: dict[str, Any], auth: AuthContext) -> ActionHTTPResponse:
        request_id = payload.get("requestId")
        action = payload.get("action")
        args = payload.get("args") or {}

        if not isinstance(action, str) or not action:
            return self._error_response(
                request_id=request_id,
                action="",
                err=ActionError(
                    status_code=400,
                    code="invalid_action",
                    message="Field 'action' must be a non-empty string",
                ),
            )
        if not isinstance(args, dict):
            return self._error_response(
                request_id=request_id,
                action=action,
                err=ActionError(status_code=400, code="invalid_args", message="Field 'args' must be an object"),
            )

        handler = self._handlers.get(action)
        if not handler:
            return self._error_response(
                request_id=request_id,
                action=action,
                err=ActionError(status_code=400, code="unknown_action", message=f"Unknown action: {action}"),
            )

        try:
            result = await handler(request_id, args, auth)
            return ActionHTTPResponse(
                status_code=200,
                body={"requestId": request_id, "action": action, "ok": True, "result": result},
            )
        except ActionError as err:
            return self._error_response(request_id=request_id, action=action, err=err)
        except HueTransportError as err:
            return self._error_response(
                request_id=request_id,
                action=action,
                err=ActionError(
                    status_code=424,
                    code="bridge_unreachable",
                    message="Hue Bridge unreachable",
                    details={"error": str(err)},
                ),
            )
        except HueUpstreamError as err:
            status_code = 429 if err.status_code == 429 else 502
            code = "bridge_rate_limited" if err.status_code == 429 else "bridge_error"
            return self._error_response(
                request_id=request_id,
                action=action,
                err=ActionError(
                    status_code=status_code,
                    code=code,
                    message="Hue Bridge returned an error",
                    details={"status": err.status_code, "body": err.body},
                ),
            )
        except HueApiError as err:
            return self._error_response(
                request_id=request_id,
                action=action,
                err=ActionError(
                    status_code=502,
                    code="bridge_error",
                    message=err.description or "Hue Bridge returned an error",
                    details={"type": err.type, "address": err.address},
                ),
            )
        except Exception as err:
            logger.exception("Action %s failed", action)
            return self._error_response(
                request_id=request_id,
                action=action,
                err=ActionError(status_code=500, code="internal_error", message=str(err)),
            )

    @staticmethod
    def _error_response(*, request_id: str | None, action: str, err: ActionError) -> ActionHTTPResponse:
        body: dict[str, Any] = {
            "requestId": request_id,
            "action": action,
            "ok": False,
            "error": {"code": err.code, "message": err.message, "details": err.details},
        }
        return ActionHTTPResponse(status_code=err.status_code, body=body)

    async def _bridge_discover(self, request_id: str | None, args: dict[str, Any], _: AuthContext):
        timeout_ms = args.get("timeoutMs", 5000)
        if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, (int, float)) or timeout_ms <= 0:
            timeout_ms = 5000
        bridges = await self.hue.discover(timeout=timeout_ms / 1000)
        return {"bridges": bridges}

    async def _bridge_create_user(self, request_id: str | None, args: dict[str, Any], _: AuthContext):
        address = args.get("address")
        if not isinstance(address, str) or not address.strip():
            raise ActionError(status_code=400, code="invalid_address", message="address must be a string")
        address = address.strip()
        if "://" in address or "/" in address or " " in address:
            raise ActionError(
                status_code=400,
                code="invalid_address",
                message="address must be an IP/hostname only (no scheme/path)",
            )
        port = args.get("port") or self.config.bridge_port
        if isinstance(port, bool) or not isinstance(port, int):
            raise ActionError(status_code=400, code="invalid_port", message="port must be an integer")
        devicetype = args.get("devicetype") or DEFAULT_DEVICETYPE
        if not isinstance(devicetype, str):
            raise ActionError(status_code=400, code="invalid_devicetype", message="devicetype must be a string")

        client = self._hue_factory(
            bridge_host=address,
            username=None,
            port=port,
            ssl=self.config.bridge_ssl,
            retry_max_attempts=self.config.retry_max_attempts,
            retry_base_delay_ms=self.config.retry_base_delay_ms,
        )
        try:
            username = await client.create_user(devicetype)
        except HueApiError as err:
            if err.link_button_not_pressed:
                raise ActionError(
                    status_code=409,
                    code="link_button_not_pressed",
                    message="Press the Hue Bridge button and retry",
                ) from err
            logger.error("Could not create user on %s: %s", address, err)
            raise ActionError(
                status_code=502,
                code="bridge_pairing_failed",
                message="Bridge rejected pairing request",
                details={"type": err.type, "description": err.description},
            ) from err
        finally:
            await client.close()

        await self.tree.set_setting("bridge_host", address)
        await self.tree.set_setting("bridge_user", username)
        return {"username": username, "address": address, "stored": True}

    async def _state_get(self, request_id: str | None, args: dict[str, Any], _: AuthContext):
        state_id = args.get("id")
        if not isinstance(state_id, str) or not state_id:
            raise ActionError(status_code=400, code="invalid_id", message="id must be a string")
        state = await self.tree.get_state(state_id)
        if state is None:
            raise ActionError(status_code=404, code="not_found", message=f"No state {state_id}")
        return state_item(state_id, state)

    async def _state_set(self, request_id: str | None, args: dict[str, Any], _: AuthContext):
        state_id = args.get("id")
        if not isinstance(state_id, str) or not state_id:
            raise ActionError(status_code=400, code="invalid_id", message="id must be a string")
        if "val" not in args:
            raise ActionError(status_code=400, code="invalid_val", message="val is required")
        obj = await self.tree.get_object(state_id)
        if obj is None or obj.type != "state":
            raise ActionError(status_code=404, code="not_found", message=f"No state {state_id}")
        if obj.common.get("write") is False:
            raise ActionError(status_code=400, code="read_only", message=f"State {state_id} is read-only")

        state = await self.tree.set_state(state_id, args["val"], ack=False)
        return state_item(state_id, state)
