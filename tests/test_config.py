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

import pytest
import yaml

from utils.config import DEFAULT_SETTINGS, ConfigManager

ENV_KEYS = (
    "DEFAULT_VOLUME", "ALONE_GRACE_PERIOD", "IGNORE_DEAFENED", "RECONNECT_DELAY",
    "MAX_RECONNECT_FAILURES", "ANNOUNCE_RECONNECTION", "NOTIFY_ON_DISABLE",
    "REQUIRE_MEMBERS", "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


async def test_missing_files_are_generated(tmp_path):
    config = ConfigManager(tmp_path)
    await config.load()

    assert (tmp_path / "settings.yaml").exists()
    assert (tmp_path / "messages.yaml").exists()
    assert config.settings == DEFAULT_SETTINGS
    written = yaml.safe_load((tmp_path / "settings.yaml").read_text(encoding="utf-8"))
    assert written["continuity"]["max_reconnect_failures"] == 3


async def test_yaml_overrides_defaults(tmp_path):
    (tmp_path / "settings.yaml").write_text(
        "continuity:\n  reconnect_delay: 2\n  bogus: 1\n", encoding="utf-8"
    )
    config = ConfigManager(tmp_path)
    await config.load()

    assert config.section("continuity")["reconnect_delay"] == 2
    assert config.section("continuity")["max_reconnect_failures"] == 3
    assert "bogus" not in config.section("continuity")


async def test_env_overrides_yaml(tmp_path, monkeypatch):
    (tmp_path / "settings.yaml").write_text("default_volume: 20\n", encoding="utf-8")
    monkeypatch.setenv("DEFAULT_VOLUME", "70")
    monkeypatch.setenv("REQUIRE_MEMBERS", "TRUE")
    monkeypatch.setenv("ALONE_GRACE_PERIOD", "30")
    config = ConfigManager(tmp_path)
    await config.load()

    assert config.get("default_volume") == 70
    assert config.section("continuity")["require_members"] is True
    assert config.section("presence")["alone_grace_period"] == 30


async def test_invalid_env_value_is_ignored(tmp_path, monkeypatch):
    monkeypatch.setenv("MAX_RECONNECT_FAILURES", "lots")
    config = ConfigManager(tmp_path)
    await config.load()

    assert config.section("continuity")["max_reconnect_failures"] == 3


async def test_out_of_range_values_are_clamped(tmp_path):
    (tmp_path / "settings.yaml").write_text(
        "default_volume: 300\ncontinuity:\n  max_reconnect_failures: 0\n", encoding="utf-8"
    )
    config = ConfigManager(tmp_path)
    await config.load()

    assert config.get("default_volume") == 100
    assert config.section("continuity")["max_reconnect_failures"] == 1


async def test_null_values_restore_defaults(tmp_path):
    (tmp_path / "settings.yaml").write_text(
        "presence:\n  alone_grace_period:\nlogging:\n", encoding="utf-8"
    )
    config = ConfigManager(tmp_path)
    await config.load()

    assert config.section("presence")["alone_grace_period"] == 10
    assert config.section("logging")["level"] == "verbose"


async def test_broken_yaml_uses_defaults(tmp_path):
    (tmp_path / "settings.yaml").write_text("presence: [unclosed\n", encoding="utf-8")
    config = ConfigManager(tmp_path)
    await config.load()

    assert config.section("presence") == DEFAULT_SETTINGS["presence"]


async def test_messages_format_and_toggle(tmp_path):
    (tmp_path / "messages.yaml").write_text(
        "reconnected:\n  text: 'back in {channel}'\n  enabled: false\n", encoding="utf-8"
    )
    config = ConfigManager(tmp_path)
    await config.load()

    assert config.msg("reconnected", channel="#music") == "back in #music"
    assert not config.is_enabled("reconnected")
    assert config.is_enabled("mute_paused")
    assert config.msg("persistent_disabled", channel="#music", failures=3).endswith("after 3 tries")


def test_missing_placeholder_returns_template():
    config = ConfigManager(None)

    assert "{reason}" in config.msg("disconnected")
    assert config.msg("no_such_message") == "no_such_message"
