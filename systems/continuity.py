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

"""Stay-connected mode: stop instead of leaving, rejoin after being kicked."""

import asyncio
import time

from loguru import logger

from systems.directory import GuildDirectory
from systems.presence import ALONE_TIMEOUT, SESSION_ENDED
from systems.registry import ContinuityRegistry
from systems.session import (
    PERSISTENT_MODE,
    PERSISTENT_TEXT_CHANNEL,
    PERSISTENT_VOICE_CHANNEL,
    RECONNECTED_AT,
    RECONNECTION_COUNT,
    PlaybackSession,
    SessionManager,
)
from utils.config import ConfigManager
from utils.guild_settings import GuildSettings, PersistentModeSettings
from utils.notify import Notifier

# Teardown reason -> message key suffix
REASON_KEYS = {
    ALONE_TIMEOUT: "alone",
    SESSION_ENDED: "removed",
}


class ContinuityManager:
    """Decides what happens when a session ends.

    Teardown requests (alone too long, bot kicked) either stop playback and
    stay in the channel, or disconnect for good, depending on the guild's
    stay-connected setting. When a session is destroyed while the setting
    is on, a single delayed reconnection is scheduled per guild.

    After max_reconnect_failures consecutive failed rejoins the setting is
    turned off and saved, so a deleted or locked channel can't keep the bot
    retrying forever.
    """

    def __init__(
        self,
        sessions: SessionManager,
        directory: GuildDirectory,
        registry: ContinuityRegistry,
        guild_settings: GuildSettings,
        notifier: Notifier,
        config_manager: ConfigManager,
    ) -> None:
        self.sessions = sessions
        self.directory = directory
        self.registry = registry
        self.guild_settings = guild_settings
        self.notifier = notifier
        self.config_manager = config_manager

    @property
    def _settings(self) -> dict:
        return self.config_manager.section("continuity")

    # =========================================================================
    # Teardown
    # =========================================================================

    async def on_teardown_requested(self, session: PlaybackSession, reason: str) -> None:
        guild_id = session.guild_id
        persistent = self.guild_settings.get_persistent_mode_settings(guild_id)
        suffix = REASON_KEYS.get(reason)

        if persistent.enabled:
            try:
                await session.stop()
            except Exception:
                logger.opt(exception=True).warning("stop during teardown failed")
            key = f"stopped_{suffix}" if suffix else "stopped"
            await self.notifier.notify(guild_id, session.text_channel_id, key, reason=reason)
            self.registry.clear_session_state(guild_id)
            logger.info(f"stopped, staying connected ({suffix or reason.lower()})")

            # Kicked out of voice: let go of the player so the rejoin can start
            if not session.is_connected:
                await session.destroy(reason, silent=True)
            return

        key = f"disconnected_{suffix}" if suffix else "disconnected"
        await self.notifier.notify(guild_id, session.text_channel_id, key, reason=reason)
        self.registry.clear_session_state(guild_id, release_guard=True)
        logger.info(f"disconnecting ({suffix or reason.lower()})")
        await session.destroy(reason, silent=True)

    # =========================================================================
    # Reconnection
    # =========================================================================

    def on_session_destroyed(self, guild_id: int, reason: str) -> bool:
        """Schedule a reconnection if stay-connected is on.

        Returns True if one was scheduled. Runs without awaiting, so the
        guard check and claim can't interleave with another destroy event.
        The alone timer and mute state go with the session, whoever
        destroyed it; the guard stays.
        """
        self.registry.clear_session_state(guild_id)

        if self.registry.has_reconnect_guard(guild_id):
            logger.debug(f"reconnection already pending for guild {guild_id}")
            return False

        persistent = self.guild_settings.get_persistent_mode_settings(guild_id)
        if not persistent.enabled or persistent.voice_channel_id is None:
            return False

        if not self.registry.claim_reconnect(guild_id):
            return False

        delay = float(self._settings.get("reconnect_delay", 5))
        task = asyncio.create_task(
            self._delayed_reconnect(guild_id, delay),
            name=f"reconnect-{guild_id}",
        )
        self.registry.track_reconnect(guild_id, task)
        kind = REASON_KEYS.get(reason) or reason.lower()
        logger.info(f"session ended ({kind}), reconnecting in {delay:g}s")
        return True

    async def _delayed_reconnect(self, guild_id: int, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            await self.attempt_reconnection(guild_id)
        except asyncio.CancelledError:
            pass  # Shutdown or guild removed
        except Exception:
            logger.opt(exception=True).error("reconnection crashed")
        finally:
            self.registry.release_reconnect(guild_id)

    async def attempt_reconnection(self, guild_id: int) -> PlaybackSession | None:
        """Rejoin the guild's stay-connected channel.

        Settings are re-read here rather than captured at scheduling time,
        the user may have changed them during the delay. Returns the new
        session, or None when nothing was (re)connected.
        """
        try:
            persistent = self.guild_settings.get_persistent_mode_settings(guild_id)
            if not persistent.enabled:
                logger.debug("stay connected turned off meanwhile, not reconnecting")
                return None

            live = self.sessions.live(guild_id)
            if live is not None:
                self._tag(live, persistent)
                logger.debug("already connected, skipping reconnection")
                return None

            voice = self.directory.get_channel(guild_id, persistent.voice_channel_id)
            if voice is None or not self.directory.is_voice_channel(voice):
                logger.warning(
                    f"stay connected channel {persistent.voice_channel_id} is gone, turning it off"
                )
                await self.guild_settings.set_persistent_mode(guild_id, False)
                return None

            if not self.directory.has_permissions(voice, "connect", "speak"):
                # No retry here; the next destroy event tries again
                logger.warning(f"missing connect/speak permissions in #{voice.name}, not reconnecting")
                return None

            if self._settings.get("require_members", False) and self.directory.human_count(guild_id, voice.id) == 0:
                logger.info(f"#{voice.name} is empty, not reconnecting")
                return None

            text = self.directory.get_channel(guild_id, persistent.text_channel_id)
            text_channel_id = text.id if text is not None and self.directory.is_text_channel(text) else voice.id

            volume = self.guild_settings.get_default_volume(guild_id)
            session = self.sessions.create(guild_id, voice.id, text_channel_id, volume)
            try:
                await session.connect()
            except Exception as e:
                await self._on_reconnect_failed(guild_id, voice, text_channel_id, e)
                return None

            count = self.registry.record_reconnection(guild_id)
            self.registry.reset_failures(guild_id)
            self._tag(session, persistent, text_channel_id=text_channel_id)
            session.set_data(RECONNECTED_AT, time.time())
            session.set_data(RECONNECTION_COUNT, count)
            logger.info(f"reconnected to #{voice.name} (reconnection #{count})")

            if self._settings.get("announce_reconnection", True):
                await self.notifier.notify(guild_id, text_channel_id, "reconnected", channel=voice.mention)
            return session
        finally:
            self.registry.release_reconnect(guild_id)

    async def _on_reconnect_failed(self, guild_id: int, voice, text_channel_id: int, error: Exception) -> None:
        failures = self.registry.record_failure(guild_id)
        limit = int(self._settings.get("max_reconnect_failures", 3))
        logger.warning(f"reconnection to #{voice.name} failed ({failures}/{limit}): {error}")

        if failures < limit:
            return

        await self.guild_settings.set_persistent_mode(guild_id, False)
        self.registry.reset_failures(guild_id)
        logger.log("NOTICE", f"stay connected turned off after {failures} failed reconnections")

        if self._settings.get("notify_on_disable", True):
            await self.notifier.notify(
                guild_id, text_channel_id, "persistent_disabled",
                channel=voice.mention, failures=failures,
            )

    def _tag(
        self,
        session: PlaybackSession,
        persistent: PersistentModeSettings,
        text_channel_id: int | None = None,
    ) -> None:
        session.set_data(PERSISTENT_MODE, True)
        session.set_data(PERSISTENT_VOICE_CHANNEL, persistent.voice_channel_id)
        session.set_data(PERSISTENT_TEXT_CHANNEL, text_channel_id or persistent.text_channel_id)
