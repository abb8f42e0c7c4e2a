# Copyright (C) 2026 grodz
#
# This file is part of Tether.
#
# Tether is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""Per-guild persistent settings."""

import asyncio
import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from loguru import logger


@dataclass(frozen=True)
class PersistentModeSettings:
    """Stay-connected configuration for one guild."""
    enabled: bool = False
    voice_channel_id: int | None = None
    text_channel_id: int | None = None
    auto_disconnect: bool = True


class GuildSettings:
    """Per-guild settings that persist across bot restarts.

    Stored in guilds.json keyed by guild id (as a string, JSON keys are
    always strings). Reads are served from memory; writes update memory
    and then save with an atomic temp-file-then-rename.

    Persisted values per guild:
    - persistent_mode: {enabled, voice_channel_id, text_channel_id, auto_disconnect}
    - default_volume: Volume for new sessions (falls back to config default_volume)

    Usage:
        guild_settings.get_persistent_mode_settings(guild_id)
        await guild_settings.set_persistent_mode(guild_id, True, vc_id, tc_id)
        guild_settings.get_default_volume(guild_id)

    Attributes:
        data_path: Directory containing guilds.json
        settings_file: Full path to guilds.json
        guilds: Current settings dict (in-memory)
    """

    DEFAULT_GUILD = {
        "persistent_mode": {
            "enabled": False,
            "voice_channel_id": None,
            "text_channel_id": None,
            "auto_disconnect": True,
        },
        "default_volume": None,
    }

    def __init__(self, data_path: Path, default_volume: int = 50) -> None:
        self.data_path = data_path
        self.settings_file = data_path / "guilds.json"
        self.default_volume = default_volume
        self.guilds: dict[str, dict] = {}
        self._save_lock = asyncio.Lock()

    async def load(self) -> dict:
        """Load guild settings from guilds.json on startup.

        If file is corrupt, backs up to .bak and starts empty.
        If file is missing, starts empty.
        """
        if self.settings_file.exists():
            try:
                content = await asyncio.to_thread(self.settings_file.read_text, encoding='utf-8')
                loaded = json.loads(content)
                if not isinstance(loaded, dict):
                    raise ValueError("guilds.json must contain an object")
                self.guilds = {
                    str(guild_id): entry
                    for guild_id, entry in loaded.items()
                    if isinstance(entry, dict)
                }
                enabled = sum(
                    1 for entry in self.guilds.values()
                    if entry.get("persistent_mode", {}).get("enabled")
                )
                logger.info(f"restored settings for {len(self.guilds)} guilds ({enabled} staying connected)")
            except (json.JSONDecodeError, ValueError, OSError):
                # Preserve corrupted file for debugging
                backup = self.settings_file.with_suffix('.json.bak')
                try:
                    self.settings_file.rename(backup)
                    logger.warning(f"guild settings corrupt, backed up to {backup.name}")
                except OSError:
                    logger.warning("guild settings corrupt, using defaults")
                self.guilds = {}
        else:
            logger.info("guild settings not found, using defaults")
            self.guilds = {}
        return self.guilds

    async def save(self) -> None:
        """Persist current settings to guilds.json.

        Lock serializes concurrent saves. Exceptions are logged but not raised.
        """
        async with self._save_lock:
            temp_path = None
            try:
                self.data_path.mkdir(parents=True, exist_ok=True)
                temp_fd, temp_path = tempfile.mkstemp(dir=self.data_path, suffix='.tmp')
                snapshot = json.loads(json.dumps(self.guilds))
                await asyncio.to_thread(self._write_atomic, temp_fd, temp_path, snapshot)
                logger.debug("guild settings saved")
            except Exception:
                if temp_path:
                    Path(temp_path).unlink(missing_ok=True)
                logger.opt(exception=True).warning("failed to save guilds.json")

    def _write_atomic(self, temp_fd: int, temp_path: str, data: dict) -> None:
        """Synchronous helper for atomic JSON write."""
        # fdopen can fail after mkstemp - close fd manually to prevent leak
        try:
            f = os.fdopen(temp_fd, 'w', encoding='utf-8')
        except Exception:
            os.close(temp_fd)
            raise
        with f:
            json.dump(data, f, indent=2)
        Path(temp_path).replace(self.settings_file)

    def _entry(self, guild_id: int) -> dict:
        key = str(guild_id)
        if key not in self.guilds:
            self.guilds[key] = {
                "persistent_mode": self.DEFAULT_GUILD["persistent_mode"].copy(),
                "default_volume": None,
            }
        return self.guilds[key]

    def get_persistent_mode_settings(self, guild_id: int) -> PersistentModeSettings:
        """Read stay-connected settings for a guild (defaults when unset)."""
        entry = self.guilds.get(str(guild_id), {})
        mode = entry.get("persistent_mode") or {}
        return PersistentModeSettings(
            enabled=bool(mode.get("enabled", False)),
            voice_channel_id=_as_id(mode.get("voice_channel_id")),
            text_channel_id=_as_id(mode.get("text_channel_id")),
            auto_disconnect=bool(mode.get("auto_disconnect", True)),
        )

    async def set_persistent_mode(
        self,
        guild_id: int,
        enabled: bool,
        voice_channel_id: int | None = None,
        text_channel_id: int | None = None,
    ) -> None:
        """Enable or disable stay-connected for a guild and save.

        Channel ids are only overwritten when given, so disabling keeps the
        previous channels around for a later re-enable.
        """
        mode = self._entry(guild_id)["persistent_mode"]
        mode["enabled"] = enabled
        if voice_channel_id is not None:
            mode["voice_channel_id"] = voice_channel_id
        if text_channel_id is not None:
            mode["text_channel_id"] = text_channel_id
        state = "on" if enabled else "off"
        logger.info(f"stay connected turned {state} for guild {guild_id}")
        await self.save()

    def get_default_volume(self, guild_id: int) -> int:
        """Guild volume for new sessions, or the configured default."""
        volume = self.guilds.get(str(guild_id), {}).get("default_volume")
        if volume is None:
            return self.default_volume
        try:
            return max(0, min(100, int(volume)))
        except (ValueError, TypeError):
            return self.default_volume

    async def set_default_volume(self, guild_id: int, volume: int) -> None:
        """Store a guild volume (0-100) and save."""
        self._entry(guild_id)["default_volume"] = max(0, min(100, int(volume)))
        await self.save()


def _as_id(value) -> int | None:
    try:
        return int(value) if value is not None else None
    except (ValueError, TypeError):
        return None
