from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable


logger = logging.getLogger(__name__)


class LeaseState(str, enum.Enum):
    PENDING = "pending"
    CONFIRMING = "confirming"


@dataclass
class WriteLease:
    channel: str
    state: LeaseState
    acquired_at: float


class WriteLeases:
    """
    Per-channel guard against poll writes while a local command is in flight.

    A lease is acquired before the command is sent, moves to CONFIRMING once
    the hub accepted it, and is released after the confirmation read. Leases
    older than `timeout_seconds` no longer block.
    """

    def __init__(self, *, timeout_seconds: float = 10.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._timeout = timeout_seconds
        self._clock = clock
        self._leases: dict[str, WriteLease] = {}

    def acquire(self, channel: str) -> WriteLease:
        lease = WriteLease(channel=channel, state=LeaseState.PENDING, acquired_at=self._clock())
        self._leases[channel] = lease
        return lease

    def mark_sent(self, channel: str) -> None:
        lease = self._leases.get(channel)
        if lease:
            lease.state = LeaseState.CONFIRMING

    def release(self, channel: str) -> None:
        if self._leases.pop(channel, None) is not None:
            logger.debug("Unblock %s", channel)

    def get(self, channel: str) -> WriteLease | None:
        return self._leases.get(channel)

    def is_blocked(self, channel: str) -> bool:
        lease = self._leases.get(channel)
        if lease is None:
            return False
        if self._clock() - lease.acquired_at > self._timeout:
            logger.debug("Lease of %s expired in state %s", channel, lease.state.value)
            del self._leases[channel]
            return False
        return True

    def clear(self) -> None:
        self._leases.clear()
