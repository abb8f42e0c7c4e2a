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

"""Guild, channel and member lookups on top of the discord.py cache."""

from dataclasses import dataclass

import discord

from utils.config import ConfigManager


@dataclass(frozen=True)
class VoiceSnapshot:
    """The parts of a member's voice state the controller looks at."""
    channel_id: int | None = None
    server_muted: bool = False
    self_muted: bool = False
    deafened: bool = False

    @classmethod
    def from_state(cls, state: discord.VoiceState | None) -> "VoiceSnapshot":
        if state is None:
            return cls()
        return cls(
            channel_id=state.channel.id if state.channel else None,
            server_muted=bool(state.mute),
            self_muted=bool(state.self_mute),
            deafened=bool(state.deaf or state.self_deaf),
        )


class GuildDirectory:
    """Read-only view of guilds, channels and members for the controller."""

    def __init__(self, bot, config_manager: ConfigManager) -> None:
        self.bot = bot
        self.config_manager = config_manager

    @property
    def bot_user_id(self) -> int | None:
        return self.bot.user.id if self.bot.user else None

    def get_channel(self, guild_id: int, channel_id: int | None):
        if channel_id is None:
            return None
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            return None
        return guild.get_channel(channel_id)

    def is_voice_channel(self, channel) -> bool:
        return isinstance(channel, discord.VoiceChannel)

    def is_text_channel(self, channel) -> bool:
        return isinstance(channel, discord.TextChannel)

    def is_self(self, member_id: int) -> bool:
        return member_id == self.bot_user_id

    def is_bot(self, guild_id: int, member_id: int) -> bool:
        """True for bot accounts. Unknown members count as humans."""
        guild = self.bot.get_guild(guild_id)
        member = guild.get_member(member_id) if guild else None
        return bool(member and member.bot)

    def bot_channel_id(self, guild_id: int) -> int | None:
        """Voice channel the bot currently sits in, if any."""
        guild = self.bot.get_guild(guild_id)
        if guild is None or guild.me is None or guild.me.voice is None:
            return None
        channel = guild.me.voice.channel
        return channel.id if channel else None

    def human_count(self, guild_id: int, channel_id: int | None) -> int:
        """Count non-bot members in a voice channel.

        With presence.ignore_deafened on, deafened members are skipped too
        (they can't hear the music anyway).
        """
        channel = self.get_channel(guild_id, channel_id)
        if channel is None:
            return 0
        ignore_deafened = self.config_manager.section("presence").get("ignore_deafened", False)
        count = 0
        for member in channel.members:
            if member.bot:
                continue
            if ignore_deafened and member.voice and (member.voice.deaf or member.voice.self_deaf):
                continue
            count += 1
        return count

    def has_permissions(self, channel, *permissions: str) -> bool:
        """Check that the bot holds every named permission in `channel`."""
        me = channel.guild.me
        if me is None:
            return False
        granted = channel.permissions_for(me)
        return all(getattr(granted, name, False) for name in permissions)
