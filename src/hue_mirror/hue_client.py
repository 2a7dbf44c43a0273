from __future__ import annotations

import asyncio
import json
import logging
import random
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx


logger = logging.getLogger(__name__)

LINK_BUTTON_NOT_PRESSED = 101

_TRANSPORT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.ReadTimeout, httpx.NetworkError)


class HueTransportError(Exception):
    pass


class HueUpstreamError(Exception):
    def __init__(self, *, status_code: int, body: Any) -> None:
        super().__init__(f"Hue upstream error: {status_code}")
        self.status_code = status_code
        self.body = body


class HueApiError(Exception):
    """Error object returned inside a successful v1 response."""

    def __init__(self, *, type: int, address: str | None = None, description: str | None = None) -> None:
        super().__init__(description or f"Hue API error {type}")
        self.type = type
        self.address = address
        self.description = description

    @property
    def link_button_not_pressed(self) -> bool:
        return self.type == LINK_BUTTON_NOT_PRESSED


HUE_ERRORS = (HueTransportError, HueUpstreamError, HueApiError)


@dataclass(frozen=True)
class HueJSONishResult:
    status_code: int
    body: Any


def raise_for_api_error(body: Any) -> None:
    if not isinstance(body, list):
        return
    for item in body:
        if isinstance(item, dict) and isinstance(item.get("error"), dict):
            err = item["error"]
            try:
                err_type = int(err.get("type", -1))
            except (TypeError, ValueError):
                err_type = -1
            raise HueApiError(type=err_type, address=err.get("address"), description=err.get("description"))


class HueClient:
    def __init__(
        self,
        *,
        bridge_host: str | None,
        username: str | None,
        port: int = 80,
        ssl: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_max_attempts: int = 3,
        retry_base_delay_ms: int = 200,
    ) -> None:
        self._bridge_host = bridge_host
        self._username = username
        self._port = port
        self._ssl = ssl
        self._transport = transport
        self._retry_max_attempts = retry_max_attempts
        self._retry_base_delay_ms = retry_base_delay_ms
        self._client: httpx.AsyncClient | None = None

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def configure(self, *, bridge_host: str | None, username: str | None) -> None:
        changed = (bridge_host != self._bridge_host) or (username != self._username)
        self._bridge_host = bridge_host
        self._username = username
        if changed:
            # Recreated on next request.
            await self.close()

    @property
    def bridge_host(self) -> str | None:
        return self._bridge_host

    @property
    def username(self) -> str | None:
        return self._username

    @property
    def port(self) -> int:
        return self._port

    def _base_url(self) -> str:
        if not self._bridge_host:
            raise HueTransportError("bridge_host not configured")
        scheme = "https" if self._ssl else "http"
        return f"{scheme}://{self._bridge_host}:{self._port}"

    def _api_path(self, path: str = "") -> str:
        if not self._username:
            raise HueTransportError("username not configured")
        return f"/api/{self._username}{path}"

    def _v2_url(self, path: str) -> str:
        if not self._bridge_host:
            raise HueTransportError("bridge_host not configured")
        return f"https://{self._bridge_host}{path}"

    def _v2_headers(self) -> dict[str, str]:
        if not self._username:
            raise HueTransportError("username not configured")
        return {"hue-application-key": self._username}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client:
            return self._client
        self._client = httpx.AsyncClient(
            base_url=self._base_url(),
            verify=False,
            timeout=httpx.Timeout(10.0, connect=3.0),
            transport=self._transport,
        )
        return self._client

    async def request_jsonish(
        self,
        *,
        method: str,
        path: str,
        json_body: Any | None = None,
        headers: dict[str, str] | None = None,
        retry: bool = False,
        max_attempts: int | None = None,
        base_delay_ms: int | None = None,
    ) -> HueJSONishResult:
        client = await self._get_client()
        attempts = (max_attempts or self._retry_max_attempts) if retry else 1
        base_delay_ms = self._retry_base_delay_ms if base_delay_ms is None else base_delay_ms

        last_transport_error: Exception | None = None
        last_upstream_error: HueUpstreamError | None = None

        for attempt in range(1, attempts + 1):
            try:
                resp = await client.request(method, path, json=json_body, headers=headers)
            except _TRANSPORT_ERRORS as exc:
                last_transport_error = exc
                if attempt == attempts:
                    raise HueTransportError(str(exc)) from exc
                await self._sleep_backoff(attempt=attempt, base_delay_ms=base_delay_ms)
                continue

            body: Any
            content_type = resp.headers.get("content-type", "")
            if "application/json" in content_type:
                try:
                    body = resp.json()
                except ValueError:
                    body = resp.text
            else:
                body = resp.text

            if resp.status_code >= 400:
                err = HueUpstreamError(status_code=resp.status_code, body=body)
                last_upstream_error = err
                should_retry = retry and (resp.status_code == 429 or 500 <= resp.status_code <= 599)
                if should_retry and attempt < attempts:
                    await self._sleep_backoff(attempt=attempt, base_delay_ms=base_delay_ms)
                    continue
                raise err

            return HueJSONishResult(status_code=resp.status_code, body=body)

        if last_upstream_error:
            raise last_upstream_error
        if last_transport_error:
            raise HueTransportError(str(last_transport_error)) from last_transport_error
        raise HueTransportError("request failed")

    async def _sleep_backoff(self, *, attempt: int, base_delay_ms: int) -> None:
        # Exponential backoff with jitter.
        delay = (base_delay_ms / 1000.0) * (2 ** (attempt - 1))
        delay = delay * (0.5 + random.random())
        await asyncio.sleep(min(delay, 5.0))

    async def get_json(self, path: str) -> Any:
        result = await self.request_jsonish(method="GET", path=path, retry=True)
        raise_for_api_error(result.body)
        return result.body

    async def put_json(self, path: str, *, json_body: Any) -> Any:
        result = await self.request_jsonish(method="PUT", path=path, json_body=json_body)
        raise_for_api_error(result.body)
        return result.body

    async def post_json(self, path: str, *, json_body: Any) -> Any:
        result = await self.request_jsonish(method="POST", path=path, json_body=json_body)
        raise_for_api_error(result.body)
        return result.body

    async def _get_record(self, path: str) -> dict[str, Any]:
        body = await self.get_json(self._api_path(path))
        if not isinstance(body, dict):
            raise HueUpstreamError(status_code=200, body=body)
        return body

    async def get_full_snapshot(self) -> dict[str, Any]:
        return await self._get_record("")

    async def get_light(self, light_id: str) -> dict[str, Any]:
        return await self._get_record(f"/lights/{light_id}")

    async def get_group(self, group_id: str) -> dict[str, Any]:
        return await self._get_record(f"/groups/{group_id}")

    async def get_sensor(self, sensor_id: str) -> dict[str, Any]:
        return await self._get_record(f"/sensors/{sensor_id}")

    async def set_light_state(self, light_id: str, state: dict[str, Any]) -> Any:
        return await self.put_json(self._api_path(f"/lights/{light_id}/state"), json_body=state)

    async def set_group_state(self, group_id: str, state: dict[str, Any]) -> Any:
        return await self.put_json(self._api_path(f"/groups/{group_id}/action"), json_body=state)

    async def enable_streaming(self, group_id: str) -> Any:
        return await self.put_json(self._api_path(f"/groups/{group_id}"), json_body={"stream": {"active": True}})

    async def disable_streaming(self, group_id: str) -> Any:
        return await self.put_json(self._api_path(f"/groups/{group_id}"), json_body={"stream": {"active": False}})

    async def update_sensor_config(self, sensor_id: str, config: dict[str, Any]) -> Any:
        return await self.put_json(self._api_path(f"/sensors/{sensor_id}/config"), json_body=config)

    async def update_sensor_state(self, sensor_id: str, state: dict[str, Any]) -> Any:
        return await self.put_json(self._api_path(f"/sensors/{sensor_id}/state"), json_body=state)

    async def create_user(self, devicetype: str) -> str:
        """
        Registers a new user; the link button on the bridge has to be pressed first.

        Raises HueApiError with `type == 101` when it was not.
        """
        body = await self.post_json("/api", json_body={"devicetype": devicetype})
        if isinstance(body, list):
            for item in body:
                success = item.get("success") if isinstance(item, dict) else None
                if isinstance(success, dict) and isinstance(success.get("username"), str):
                    logger.info("created new user: %s", success["username"])
                    return success["username"]
        raise HueUpstreamError(status_code=200, body=body)

    async def get_resource_uuids(self) -> dict[str, dict[str, Any]]:
        result = await self.request_jsonish(
            method="GET", path=self._v2_url("/clip/v2/resource"), headers=self._v2_headers(), retry=True
        )
        data = result.body.get("data") if isinstance(result.body, dict) else None
        if not isinstance(data, list):
            return {}
        return {item["id"]: item for item in data if isinstance(item, dict) and isinstance(item.get("id"), str)}

    async def stream_sse_json(self, path: str = "/eventstream/clip/v2") -> AsyncIterator[Any]:
        client = await self._get_client()
        headers = {"Accept": "text/event-stream", **self._v2_headers()}
        try:
            async with client.stream("GET", self._v2_url(path), headers=headers, timeout=None) as resp:
                if resp.status_code >= 400:
                    body = await resp.aread()
                    raise HueUpstreamError(status_code=resp.status_code, body=body.decode("utf-8", "ignore"))

                data_lines: list[str] = []
                async for line in resp.aiter_lines():
                    if line == "":
                        if data_lines:
                            payload = "\n".join(data_lines)
                            data_lines = []
                            try:
                                yield json.loads(payload)
                            except ValueError:
                                logger.error("Could not parse data from push connection: %r", payload[:200])
                        continue
                    if line.startswith("data:"):
                        data_lines.append(line[len("data:") :].lstrip())
        except httpx.TransportError as exc:
            raise HueTransportError(str(exc)) from exc

    async def discover(self, timeout: float = 5.0) -> list[dict[str, Any]]:
        from hue_mirror.discovery import discover_bridges

        return await discover_bridges(timeout_seconds=timeout)
