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

"""Configuration management for Tether."""

import asyncio
import os
import sys
import tempfile
from pathlib import Path
from typing import Any, Callable

import yaml
from loguru import logger


# =============================================================================
# DEFAULT SETTINGS SCHEMA
# =============================================================================
# These defaults are used when settings.yaml is missing or incomplete.
# Environment variables can override any setting (see _apply_env_overrides).
#
#   default_volume         - Volume for new sessions when a guild has none (0-100)
#
# Presence Settings (presence.*):
#   alone_grace_period     - Seconds alone in VC before the session is torn down
#   ignore_deafened        - Deafened members don't count as listeners
#
# Continuity Settings (continuity.*):
#   reconnect_delay        - Seconds between an external disconnect and the rejoin attempt
#   max_reconnect_failures - Consecutive failed rejoins before persistent mode is turned off
#   announce_reconnection  - Post a message after a successful rejoin
#   notify_on_disable      - Post a message when persistent mode gets turned off
#   require_members        - Only rejoin if someone is sitting in the channel
#
# Logging Settings (logging.*):
#   level                  - Log verbosity: "minimal", "verbose", or "debug"
# =============================================================================

DEFAULT_SETTINGS = {
    "default_volume": 50,
    "presence": {
        "alone_grace_period": 10,
        "ignore_deafened": False,
    },
    "continuity": {
        "reconnect_delay": 5,
        "max_reconnect_failures": 3,
        "announce_reconnection": True,
        "notify_on_disable": True,
        "require_members": False,
    },
    # Logging (LOG_LEVEL env var overrides this)
    "logging": {
        "level": "verbose",  # minimal, verbose, debug
    },
}

# =============================================================================
# DEFAULT MESSAGES SCHEMA
# =============================================================================
# Channel notifications with per-message enable/disable control.
#   text    - The message template (supports {variables} for formatting)
#   enabled - Whether the notification is posted at all
# =============================================================================

DEFAULT_MESSAGES = {
    # Mute
    "mute_paused": {"text": "⏸️ **music paused** - i was server-muted", "enabled": True},
    "self_mute_paused": {"text": "⏸️ **music paused** - i was muted", "enabled": True},
    "unmute_resumed": {"text": "▶️ **music resumed** - i was unmuted", "enabled": True},

    # Teardown with persistent mode on
    "stopped_alone": {"text": "⏹️ **music stopped** - nobody was listening (staying connected)", "enabled": True},
    "stopped_removed": {"text": "⏹️ **music stopped** - i was removed from the voice channel (rejoining shortly)", "enabled": True},
    "stopped": {"text": "⏹️ **music stopped** - {reason} (staying connected)", "enabled": True},

    # Teardown with persistent mode off
    "disconnected_alone": {"text": "👋 **disconnected** - i was alone in the voice channel for too long", "enabled": True},
    "disconnected_removed": {"text": "🔌 **disconnected** - i was removed from the voice channel", "enabled": True},
    "disconnected": {"text": "🔌 **disconnected** - {reason}", "enabled": True},

    # Reconnection
    "reconnected": {"text": "🔄 **stay connected:** back in {channel}", "enabled": True},
    "persistent_disabled": {
        "text": "⚠️ **stay connected turned off:** couldn't rejoin {channel} after {failures} tries",
        "enabled": True,
    },
}


def deep_merge(user: dict, defaults: dict) -> dict:
    """Merge user config with defaults, preserving nested structure.

    User values override defaults. For nested dicts, merges recursively.
    Unknown keys (not in defaults) are logged as warnings and ignored.
    """
    result = defaults.copy()
    for key, value in user.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(value, result[key])
        elif key in defaults:
            result[key] = value
        else:
            logger.warning(f"unknown config key: {key}")
    return result


def load_yaml(path: Path, defaults: dict) -> dict:
    """Load YAML file with defaults and error handling.

    If file doesn't exist or is invalid, returns defaults without error.
    Invalid YAML syntax is logged and defaults are used.
    """
    if not path.exists():
        return _copy_defaults(defaults)

    try:
        with open(path, 'r', encoding='utf-8') as f:
            user = yaml.safe_load(f) or {}

        if not isinstance(user, dict):
            logger.warning(f"{path.name} invalid, using defaults")
            return _copy_defaults(defaults)

        return deep_merge(user, _copy_defaults(defaults))

    except yaml.YAMLError:
        logger.opt(exception=True).error(f"failed to parse {path.name}")
        return _copy_defaults(defaults)


def _copy_defaults(defaults: dict) -> dict:
    """Copy defaults one level deep so sections can be mutated safely."""
    return {k: (v.copy() if isinstance(v, dict) else v) for k, v in defaults.items()}


def save_yaml(path: Path, data: dict, header: str = "") -> None:
    """Save YAML atomically with optional header comment.

    Uses temp-file-then-rename pattern to prevent corruption if the bot
    crashes mid-write. Creates parent directories if they don't exist.
    """
    temp_path = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, suffix='.tmp')
        try:
            f = os.fdopen(temp_fd, 'w', encoding='utf-8')
        except Exception:
            os.close(temp_fd)
            raise
        with f:
            if header:
                f.write(header)
            yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        Path(temp_path).replace(path)
    except Exception:
        if temp_path:
            Path(temp_path).unlink(missing_ok=True)
        raise


class ConfigManager:
    """Manages bot configuration from settings.yaml and messages.yaml.

    Loads configuration at startup with this priority (highest wins):
    1. DEFAULT_SETTINGS / DEFAULT_MESSAGES (built-in defaults)
    2. settings.yaml / messages.yaml (user customization)
    3. Environment variables (Docker/deployment override)

    Access patterns:
        config_manager.get("key")                   # Get top-level setting
        config_manager.section("continuity")        # Get a nested section
        config_manager.msg("key", **vars)           # Get formatted message
        config_manager.is_enabled("key")            # Check if message should post

    Attributes:
        config_path: Directory containing settings.yaml and messages.yaml
        settings: Loaded settings dict (after validation)
        messages: Loaded messages dict
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self.settings: dict = _copy_defaults(DEFAULT_SETTINGS)
        self.messages: dict = _copy_defaults(DEFAULT_MESSAGES)

    async def load(self) -> None:
        """Load settings and messages from YAML, apply env overrides, validate.

        Generates missing config files with default values and header comments.
        """
        settings_path = self.config_path / "settings.yaml"
        self.settings = await asyncio.to_thread(
            load_yaml, settings_path, DEFAULT_SETTINGS
        )

        if not settings_path.exists():
            header = "# Tether Settings\n# Edit these values to customize behavior\n\n"
            await asyncio.to_thread(save_yaml, settings_path, DEFAULT_SETTINGS, header)
            logger.debug(f"generated {settings_path.name}")

        messages_path = self.config_path / "messages.yaml"
        self.messages = await asyncio.to_thread(
            load_yaml, messages_path, DEFAULT_MESSAGES
        )

        if not messages_path.exists():
            header = "# Tether Notifications\n# Reword or disable channel notifications here\n\n"
            await asyncio.to_thread(save_yaml, messages_path, DEFAULT_MESSAGES, header)
            logger.debug(f"generated {messages_path.name}")

        self._apply_env_overrides()
        self._validate_settings()

        logger.debug("config loaded")

    def _validate_settings(self) -> None:
        """Validate and clamp settings after loading from all sources.

        1. Null-restore: YAML "key:" with no value becomes None. Restores
           defaults for null top-level keys and null nested keys.
        2. Bounded numbers: clamps volume, grace period, reconnect delay and
           failure threshold to valid ranges (logs warning if clamped).
        """
        for key in list(self.settings):
            if self.settings[key] is None and key in DEFAULT_SETTINGS:
                default = DEFAULT_SETTINGS[key]
                self.settings[key] = default.copy() if isinstance(default, dict) else default
        for section in ("presence", "continuity", "logging"):
            sect = self.settings.get(section)
            defaults = DEFAULT_SETTINGS[section]
            if not isinstance(sect, dict):
                logger.warning(f"{section} section invalid, using defaults")
                self.settings[section] = defaults.copy()
                continue
            for key in list(sect):
                if sect[key] is None and key in defaults:
                    sect[key] = defaults[key]

        # (section, key) -> (cast, min, max); section None means top-level
        validations = {
            (None, "default_volume"): (int, 0, 100),
            ("presence", "alone_grace_period"): (float, 0, None),
            ("continuity", "reconnect_delay"): (float, 0, None),
            ("continuity", "max_reconnect_failures"): (int, 1, None),
        }
        for (section, key), (cast, min_val, max_val) in validations.items():
            target = self.settings if section is None else self.settings[section]
            default = DEFAULT_SETTINGS[key] if section is None else DEFAULT_SETTINGS[section][key]
            name = key if section is None else f"{section}.{key}"
            value = target.get(key)
            try:
                v = cast(value)
                clamped = max(min_val, v)
                if max_val is not None:
                    clamped = min(max_val, clamped)
                if clamped != v:
                    range_str = f"{min_val}-{max_val}" if max_val is not None else f"{min_val}+"
                    logger.warning(f"{name}={v} out of range, clamped to {clamped} (valid: {range_str})")
                target[key] = clamped
            except (ValueError, TypeError):
                logger.warning(f"{name}={value!r} invalid, using default")
                target[key] = default

    def _apply_env_overrides(self) -> None:
        """Override settings with environment variables.

        The env_map dict maps ENV_VAR_NAME -> (setting_key, converter), where
        setting_key uses dot notation for nested keys. Boolean env vars use a
        case-insensitive "true" check. Invalid values are logged and ignored.
        """
        def non_negative(env_key: str) -> Callable[[str], float]:
            def validate(x: str) -> float:
                v = float(x)
                if v < 0:
                    logger.warning(f"{env_key}={v} out of range, clamped to 0 (valid: 0+)")
                    return 0
                return v
            return validate

        def as_bool(x: str) -> bool:
            return x.lower() == "true"

        env_map = {
            "DEFAULT_VOLUME": ("default_volume", int),
            "ALONE_GRACE_PERIOD": ("presence.alone_grace_period", non_negative("ALONE_GRACE_PERIOD")),
            "IGNORE_DEAFENED": ("presence.ignore_deafened", as_bool),
            "RECONNECT_DELAY": ("continuity.reconnect_delay", non_negative("RECONNECT_DELAY")),
            "MAX_RECONNECT_FAILURES": ("continuity.max_reconnect_failures", int),
            "ANNOUNCE_RECONNECTION": ("continuity.announce_reconnection", as_bool),
            "NOTIFY_ON_DISABLE": ("continuity.notify_on_disable", as_bool),
            "REQUIRE_MEMBERS": ("continuity.require_members", as_bool),
            "LOG_LEVEL": ("logging.level", str),
        }

        for env_key, (setting_key, converter) in env_map.items():
            if value := os.getenv(env_key):
                try:
                    converted = converter(value)
                    if "." in setting_key:
                        parts = setting_key.split(".")
                        target = self.settings
                        for part in parts[:-1]:
                            target = target.setdefault(part, {})
                            if not isinstance(target, dict):
                                # Corrupted YAML: expected dict but got scalar
                                logger.warning(f"invalid config structure for {setting_key}")
                                break
                        else:
                            target[parts[-1]] = converted
                    else:
                        self.settings[setting_key] = converted
                    logger.debug(f"{env_key} overrides {setting_key}")
                except (ValueError, TypeError) as e:
                    logger.warning(f"invalid env var {env_key}: {e}")

    def get(self, key: str, default=None) -> Any:
        """Get a top-level setting value."""
        return self.settings.get(key, default)

    def section(self, name: str) -> dict:
        """Get a nested settings section, falling back to its defaults."""
        sect = self.settings.get(name)
        if isinstance(sect, dict):
            return sect
        return DEFAULT_SETTINGS.get(name, {}).copy()

    def msg(self, key: str, **kwargs) -> str:
        """Get formatted message text from messages.yaml.

        Returns the key itself if the message is not defined anywhere.
        """
        entry = self.messages.get(key, DEFAULT_MESSAGES.get(key, {}))
        template = entry.get("text", key) if isinstance(entry, dict) else entry
        try:
            return template.format(**kwargs)
        except (KeyError, IndexError):
            return template

    def is_enabled(self, key: str) -> bool:
        """Check if a notification should be posted."""
        entry = self.messages.get(key, DEFAULT_MESSAGES.get(key, {}))
        return entry.get("enabled", True) if isinstance(entry, dict) else True


async def validate_configuration() -> None:
    """Validate configuration before bot starts, exit on failure.

    Checks performed:
    - DISCORD_TOKEN is set and has valid format (3 dot-separated sections)
    - Config and data directories exist (creates if missing)
    - Lavalink server is reachable and responding

    On failure: Logs all errors and calls sys.exit(1).
    """
    import aiohttp

    errors = []

    token = os.getenv("DISCORD_TOKEN")
    if not token:
        errors.append("DISCORD_TOKEN not set - add it to .env or the container environment")
    else:
        parts = token.strip().split(".")
        if len(parts) != 3:
            errors.append(
                "DISCORD_TOKEN format appears invalid.\n"
                "Token should have three dot-separated sections.\n"
                "Get a fresh token from: https://discord.com/developers/applications"
            )
        elif any(not part for part in parts):
            errors.append(
                "DISCORD_TOKEN has empty sections.\n"
                "Get a fresh token from: https://discord.com/developers/applications"
            )

    for env_key, default in (("CONFIG_PATH", "config"), ("DATA_PATH", "data")):
        path = Path(os.getenv(env_key) or str(Path(__file__).parent.parent / default))
        if not path.exists():
            try:
                path.mkdir(parents=True)
                logger.warning(f"created missing {default} directory: {path}")
            except OSError as e:
                errors.append(f"cannot create {default} directory {path}: {e}")

    lavalink_host = os.getenv("LAVALINK_HOST", "127.0.0.1")
    lavalink_port = os.getenv("LAVALINK_PORT", "2333")
    lavalink_password = os.getenv("LAVALINK_PASSWORD", "youshallnotpass")

    try:
        async with aiohttp.ClientSession() as session:
            url = f"http://{lavalink_host}:{lavalink_port}/version"
            headers = {"Authorization": lavalink_password}
            async with session.get(url, headers=headers, timeout=aiohttp.ClientTimeout(total=30)) as resp:
                if resp.status != 200:
                    errors.append(f"lavalink not responding at {url}")
                else:
                    version = await resp.text()
                    logger.log("NOTICE", f"lavalink version: {version}")
    except Exception as e:
        errors.append(f"cannot connect to lavalink at {lavalink_host}:{lavalink_port}: {e}")

    if errors:
        for error in errors:
            logger.error(error)
        sys.exit(1)
