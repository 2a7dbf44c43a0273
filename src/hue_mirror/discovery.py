from __future__ import annotations

import argparse
import asyncio
import json
import logging
import socket
import time
import urllib.parse
from dataclasses import dataclass
from typing import Any, Callable

import httpx


logger = logging.getLogger(__name__)

SSDP_ADDR = ("239.255.255.250", 1900)
NUPNP_URL = "https://discovery.meethue.com/"


@dataclass(frozen=True)
class DiscoveredBridge:
    ip: str
    source: str  # ssdp | nupnp
    id: str | None = None
    location: str | None = None
    port: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"ip": self.ip, "source": self.source, "id": self.id, "location": self.location, "port": self.port}


def _parse_httpish_headers(packet: str) -> dict[str, str]:
    headers: dict[str, str] = {}
    for line in packet.splitlines():
        if ":" not in line:
            continue
        k, v = line.split(":", 1)
        headers[k.strip().lower()] = v.strip()
    return headers


def _ip_from_location(location: str) -> str | None:
    try:
        parsed = urllib.parse.urlparse(location)
    except ValueError:
        return None
    return parsed.hostname or None


def _looks_like_bridge(packet: str, headers: dict[str, str]) -> bool:
    server = headers.get("server", "").lower()
    return "ipbridge" in server or "ipbridge" in packet.lower() or "hue-bridgeid" in headers


def ssdp_discover(*, timeout_seconds: float = 3.0, st: str = "ssdp:all") -> list[DiscoveredBridge]:
    msg = "\r\n".join(
        [
            "M-SEARCH * HTTP/1.1",
            f"HOST: {SSDP_ADDR[0]}:{SSDP_ADDR[1]}",
            "MAN: ssdp:discover",
            "MX: 3",
            f"ST: {st}",
            "",
            "",
        ]
    ).encode("utf-8")

    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.settimeout(0.2)
        sock.sendto(msg, SSDP_ADDR)

        deadline = time.time() + timeout_seconds
        found: dict[str, DiscoveredBridge] = {}
        while time.time() < deadline:
            try:
                data, addr = sock.recvfrom(65535)
            except socket.timeout:
                continue
            packet = data.decode("utf-8", "ignore")
            headers = _parse_httpish_headers(packet)
            if not _looks_like_bridge(packet, headers):
                continue

            location = headers.get("location")
            ip = (_ip_from_location(location) if location else None) or addr[0]
            found[ip] = DiscoveredBridge(ip=ip, source="ssdp", id=headers.get("hue-bridgeid"), location=location)
        return list(found.values())
    finally:
        sock.close()


def parse_nupnp(body: Any) -> list[DiscoveredBridge]:
    """Entries of the cloud discovery endpoint: `[{"id", "internalipaddress", "port"}]`."""
    if not isinstance(body, list):
        return []
    bridges = []
    for item in body:
        if not isinstance(item, dict) or not isinstance(item.get("internalipaddress"), str):
            continue
        port = item.get("port")
        bridges.append(
            DiscoveredBridge(
                ip=item["internalipaddress"],
                source="nupnp",
                id=item.get("id") if isinstance(item.get("id"), str) else None,
                port=port if isinstance(port, int) else None,
            )
        )
    return bridges


async def nupnp_discover(
    *, timeout_seconds: float = 5.0, url: str = NUPNP_URL, transport: httpx.AsyncBaseTransport | None = None
) -> list[DiscoveredBridge]:
    async with httpx.AsyncClient(timeout=timeout_seconds, transport=transport) as client:
        resp = await client.get(url)
        resp.raise_for_status()
        return parse_nupnp(resp.json())


def dedupe(bridges: list[DiscoveredBridge]) -> list[DiscoveredBridge]:
    by_ip: dict[str, DiscoveredBridge] = {}
    for bridge in bridges:
        by_ip.setdefault(bridge.ip, bridge)
    return list(by_ip.values())


async def discover_bridges(
    *,
    timeout_seconds: float = 5.0,
    ssdp: Callable[..., list[DiscoveredBridge]] = ssdp_discover,
    nupnp_url: str = NUPNP_URL,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[dict[str, Any]]:
    """
    Searches via SSDP and the cloud endpoint at the same time.

    Whatever has been found when `timeout_seconds` elapses is returned,
    de-duplicated by address.
    """
    tasks = {
        asyncio.create_task(asyncio.to_thread(ssdp, timeout_seconds=timeout_seconds)): "UPNP",
        asyncio.create_task(
            nupnp_discover(timeout_seconds=timeout_seconds, url=nupnp_url, transport=transport)
        ): "NUPNP",
    }
    done, pending = await asyncio.wait(tasks, timeout=timeout_seconds + 0.5)
    for task in pending:
        task.cancel()

    found: list[DiscoveredBridge] = []
    for task in tasks:
        if task not in done:
            continue
        exc = task.exception()
        if exc is not None:
            logger.error("Error on browsing via %s: %s", tasks[task], exc)
            continue
        found.extend(task.result())
    return [bridge.to_dict() for bridge in dedupe(found)]


def _print_bridges(bridges: list[dict[str, Any]], *, json_out: bool) -> None:
    if json_out:
        print(json.dumps(bridges, indent=2))
        return

    if not bridges:
        print("No Hue bridges discovered.")
        return

    for i, b in enumerate(bridges, start=1):
        label = b.get("id") or "Hue Bridge"
        print(f"{i}) {b['ip']} - {label} ({b['source']})")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="hue-mirror-discover")
    parser.add_argument("--timeout-seconds", type=float, default=5.0)
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args(argv)

    bridges = asyncio.run(discover_bridges(timeout_seconds=args.timeout_seconds))
    _print_bridges(bridges, json_out=args.json)


if __name__ == "__main__":
    main()
