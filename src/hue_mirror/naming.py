from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field


logger = logging.getLogger(__name__)


FORBIDDEN_CHARS = re.compile(r"[^._\-/ :!#$%&()+=@^{}|~\w]+")
_WHITESPACE = re.compile(r"\s")

# Top level ids owned by the engine itself.
RESERVED_NAMES = ("info", "bridge", "lightScenes")


def sanitize_name(name: str) -> str:
    """Display name -> channel name; keeps spaces so collisions can append the type."""
    return FORBIDDEN_CHARS.sub("", name.replace(".", "_"))


def to_path(name: str) -> str:
    return _WHITESPACE.sub("_", name)


def bridge_path(name: str) -> str:
    return re.sub(r"[\s.]", "_", name)


def scene_slug(name: str) -> str:
    return FORBIDDEN_CHARS.sub("", re.sub(r"[\s.]", "_", name)).lower()


class NameRegistry:
    """Channel paths claimed during one object-creation pass."""

    def __init__(self, prefix: str = "") -> None:
        self._prefix = prefix
        self._claimed: set[str] = {to_path(prefix + name) for name in RESERVED_NAMES}
        self._claimed.update(RESERVED_NAMES)

    def is_claimed(self, path: str) -> bool:
        return path in self._claimed

    def candidate(self, name: str) -> str:
        return to_path(self._prefix + sanitize_name(name))

    def claim(self, name: str, device_type: str, *, role_conflict: bool = False, label: str = "") -> str | None:
        """
        Returns the channel path for `name`, or None when the entity has to be skipped.

        A path that is already claimed, or whose existing channel carries a
        foreign role, gets the raw device type appended.
        """
        path = self.candidate(name)
        if path in self._claimed or role_conflict:
            alternative = to_path(f"{self._prefix}{sanitize_name(name)} {device_type}")
            if alternative in self._claimed:
                logger.error(
                    'channel "%s" already exists, could not use "%s" as well, skipping %s',
                    path,
                    alternative,
                    label,
                )
                return None
            logger.warning('channel "%s" already exists, using "%s" for %s', path, alternative, label)
            path = alternative
        self._claimed.add(path)
        return path


@dataclass
class PollEntry:
    id: str
    name: str
    sname: str | None = None


@dataclass
class TranslationTables:
    channel_ids: dict[str, str] = field(default_factory=dict)
    group_ids: dict[str, str] = field(default_factory=dict)
    poll_sensors: list[PollEntry] = field(default_factory=list)
    poll_lights: list[PollEntry] = field(default_factory=list)
    poll_groups: list[PollEntry] = field(default_factory=list)

    def clear(self) -> None:
        self.channel_ids.clear()
        self.group_ids.clear()
        self.poll_sensors.clear()
        self.poll_lights.clear()
        self.poll_groups.clear()

    def light_channel(self, light_id: str) -> str | None:
        for channel, lid in self.channel_ids.items():
            if lid == light_id:
                return channel
        return None

    def group_channel(self, group_id: str) -> str | None:
        for channel, gid in self.group_ids.items():
            if gid == group_id:
                return channel
        return None

    def sensor_channel(self, sensor_id: str) -> str | None:
        for entry in self.poll_sensors:
            if entry.id == sensor_id:
                return entry.name
        return None

    def remove_sensor(self, sensor_id: str) -> None:
        self.poll_sensors[:] = [e for e in self.poll_sensors if e.id != sensor_id]

    def remove_light(self, light_id: str) -> None:
        self.poll_lights[:] = [e for e in self.poll_lights if e.id != light_id]
        for channel in [c for c, lid in self.channel_ids.items() if lid == light_id]:
            del self.channel_ids[channel]

    def remove_group(self, group_id: str) -> None:
        self.poll_groups[:] = [e for e in self.poll_groups if e.id != group_id]
        for channel in [c for c, gid in self.group_ids.items() if gid == group_id]:
            del self.group_ids[channel]
