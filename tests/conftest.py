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

"""Shared fakes and fixtures for the controller tests."""

import asyncio
from dataclasses import dataclass, field

import pytest

from systems.continuity import ContinuityManager
from systems.directory import VoiceSnapshot
from systems.mute import MuteStateTracker
from systems.presence import PresenceMonitor
from systems.registry import ContinuityRegistry
from utils.config import ConfigManager
from utils.guild_settings import GuildSettings
from utils.log_setup import register_levels

register_levels()

GUILD = 100
VOICE = 200
TEXT = 300
OTHER_VOICE = 201
BOT = 1
OTHER_BOT = 2
HUMAN = 10
HUMAN_2 = 11

GRACE = 0.05
RECONNECT_DELAY = 0.01


def snap(channel_id=None, **flags) -> VoiceSnapshot:
    return VoiceSnapshot(channel_id=channel_id, **flags)


async def settle(seconds: float = 0) -> None:
    """Let scheduled tasks run."""
    await asyncio.sleep(seconds)
    for _ in range(5):
        await asyncio.sleep(0)


# =============================================================================
# Sessions
# =============================================================================


class FakeSession:
    """Stand-in for PlaybackSession backed by plain flags."""

    def __init__(self, manager, guild_id, voice_channel_id, text_channel_id=None,
                 volume=50, playing=True, connected=True):
        self.manager = manager
        self.guild_id = guild_id
        self.voice_channel_id = voice_channel_id
        self._text_channel_id = text_channel_id
        self.volume = volume
        self.current = "track" if playing else None
        self.paused = False
        self.connected = connected
        self.destroyed = False
        self.data = {}
        self.calls = []

    @property
    def text_channel_id(self):
        return self._text_channel_id or self.voice_channel_id

    @property
    def is_playing(self):
        return self.current is not None and not self.paused

    @property
    def is_paused(self):
        return self.paused

    @property
    def is_connected(self):
        return self.connected and not self.destroyed

    def get_data(self, key, default=None):
        return self.data.get(key, default)

    def set_data(self, key, value):
        self.data[key] = value

    async def pause(self):
        self.calls.append("pause")
        self.paused = True

    async def resume(self):
        self.calls.append("resume")
        self.paused = False

    async def stop(self):
        self.calls.append("stop")
        self.current = None
        self.data.pop("paused_due_to_alone", None)
        self.data.pop("paused_due_to_mute", None)

    async def connect(self):
        self.calls.append("connect")
        if self.manager.fail_connect:
            raise RuntimeError("voice handshake timed out")
        self.connected = True
        self.manager.sessions[self.guild_id] = self

    async def change_voice_channel(self, channel_id):
        self.calls.append(("move", channel_id))
        self.voice_channel_id = channel_id

    async def destroy(self, reason, silent=False):
        if self.destroyed:
            return
        self.calls.append("destroy")
        self.destroyed = True
        self.connected = False
        if self.manager.sessions.get(self.guild_id) is self:
            del self.manager.sessions[self.guild_id]
        self.manager.destroyed.append((self.guild_id, reason))
        if self.manager.on_destroyed is not None:
            self.manager.on_destroyed(self.guild_id, reason)


class FakeSessions:
    """Stand-in for SessionManager."""

    def __init__(self):
        self.sessions = {}
        self.created = []
        self.destroyed = []
        self.fail_connect = False
        self.on_destroyed = None

    def add(self, guild_id=GUILD, voice_channel_id=VOICE, text_channel_id=TEXT, **kwargs) -> FakeSession:
        session = FakeSession(self, guild_id, voice_channel_id, text_channel_id, **kwargs)
        self.sessions[guild_id] = session
        return session

    def get(self, guild_id):
        return self.sessions.get(guild_id)

    def live(self, guild_id):
        session = self.sessions.get(guild_id)
        return session if session is not None and session.is_connected else None

    def create(self, guild_id, voice_channel_id, text_channel_id, volume):
        session = FakeSession(self, guild_id, voice_channel_id, text_channel_id,
                              volume=volume, playing=False, connected=False)
        self.created.append(session)
        return session


# =============================================================================
# Directory
# =============================================================================


@dataclass
class FakeChannel:
    id: int
    name: str
    kind: str = "voice"
    members: list = field(default_factory=list)
    perms: set = field(default_factory=lambda: {"connect", "speak", "send_messages"})

    @property
    def mention(self):
        return f"<#{self.id}>"


class FakeDirectory:
    """Stand-in for GuildDirectory over plain dicts."""

    def __init__(self):
        self.channels = {
            VOICE: FakeChannel(VOICE, "music", members=[BOT, HUMAN]),
            OTHER_VOICE: FakeChannel(OTHER_VOICE, "lounge"),
            TEXT: FakeChannel(TEXT, "bot-commands", kind="text"),
        }
        self.bots = {BOT, OTHER_BOT}
        self.bot_channels = {GUILD: VOICE}

    def get_channel(self, guild_id, channel_id):
        return self.channels.get(channel_id)

    def is_voice_channel(self, channel):
        return channel.kind == "voice"

    def is_text_channel(self, channel):
        return channel.kind == "text"

    def is_self(self, member_id):
        return member_id == BOT

    def is_bot(self, guild_id, member_id):
        return member_id in self.bots

    def bot_channel_id(self, guild_id):
        return self.bot_channels.get(guild_id)

    def human_count(self, guild_id, channel_id):
        channel = self.channels.get(channel_id)
        if channel is None:
            return 0
        return sum(1 for m in channel.members if m not in self.bots)

    def has_permissions(self, channel, *permissions):
        return all(p in channel.perms for p in permissions)

    # helpers for moving members around
    def leave(self, member_id, channel_id=VOICE):
        self.channels[channel_id].members.remove(member_id)

    def join(self, member_id, channel_id=VOICE):
        self.channels[channel_id].members.append(member_id)


class FakeNotifier:
    def __init__(self):
        self.sent = []

    async def notify(self, guild_id, channel_id, key, **fields):
        self.sent.append((guild_id, channel_id, key, fields))
        return True

    @property
    def keys(self):
        return [key for _, _, key, _ in self.sent]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def config_manager(tmp_path):
    config = ConfigManager(tmp_path / "config")
    config.settings["presence"]["alone_grace_period"] = GRACE
    config.settings["continuity"]["reconnect_delay"] = RECONNECT_DELAY
    return config


@pytest.fixture
def guild_settings(tmp_path):
    return GuildSettings(tmp_path / "data")


@pytest.fixture
def registry():
    return ContinuityRegistry()


@pytest.fixture
def sessions():
    return FakeSessions()


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
async def continuity(sessions, directory, registry, guild_settings, notifier, config_manager):
    manager = ContinuityManager(sessions, directory, registry, guild_settings, notifier, config_manager)
    sessions.on_destroyed = manager.on_session_destroyed
    yield manager
    await registry.shutdown()


@pytest.fixture
def presence(sessions, directory, registry, config_manager, continuity):
    return PresenceMonitor(sessions, directory, registry, config_manager, continuity.on_teardown_requested)


@pytest.fixture
def mute(sessions, registry, notifier):
    return MuteStateTracker(sessions, registry, notifier)


@pytest.fixture
async def persistent(guild_settings):
    """Stay-connected on for GUILD, bound to VOICE/TEXT."""
    await guild_settings.set_persistent_mode(GUILD, True, VOICE, TEXT)
    return guild_settings
