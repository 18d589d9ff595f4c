from __future__ import annotations

from datetime import timedelta

import pytest

from focusdebt.config import (
    ConfigError,
    TrackerSettings,
    load_settings,
    parse_setting,
    update_setting,
    write_default_config,
)
from focusdebt.models import Classification, AppSubject, DomainSubject


def test_missing_file_yields_defaults(tmp_path) -> None:
    settings = load_settings(tmp_path / "absent.toml")

    assert settings == TrackerSettings()
    assert settings.tracking_interval == timedelta(seconds=1)
    assert settings.save_interval == timedelta(seconds=30)
    assert settings.deep_focus_threshold == timedelta(minutes=30)
    assert settings.gap_tolerance == 2


def test_values_are_read_from_toml(tmp_path) -> None:
    path = tmp_path / "config.toml"
    path.write_text(
        "\n".join(
            [
                "tracking_interval_ms = 250",
                "save_interval_ms = 5000",
                "deep_focus_threshold_minutes = 45",
                "gap_tolerance = 4",
                "probe_timeout_ms = 100",
                'focus_apps = ["code", " blender "]',
                'focus_sites = ["github.com"]',
                'ignored_apps = ["1password"]',
                'database_path = "~/focus.db"',
                'log_level = "debug"',
            ]
        ),
        encoding="utf-8",
    )

    settings = load_settings(path)

    assert settings.tracking_interval == timedelta(milliseconds=250)
    assert settings.save_interval == timedelta(seconds=5)
    assert settings.deep_focus_threshold == timedelta(minutes=45)
    assert settings.gap_tolerance == 4
    assert settings.effective_probe_timeout == timedelta(milliseconds=100)
    assert settings.focus_apps == ["code", "blender"]
    assert settings.focus_domains == ["github.com"]
    assert settings.ignored_apps == ["1password"]
    assert settings.database_path.name == "focus.db"
    assert "~" not in str(settings.database_path)
    assert settings.log_level == "debug"


@pytest.mark.parametrize(
    "content",
    [
        "tracking_interval_ms = 0",
        "save_interval_ms = -5",
        "tracking_interval_ms = true",
        'tracking_interval_ms = "fast"',
        "gap_tolerance = -1",
        'focus_apps = "code"',
        "focus_sites = [1, 2]",
        'log_level = "loud"',
        "probe_timeout_ms = 0",
        "tracking_interval_ms = ",
    ],
)
def test_invalid_configuration_is_rejected(tmp_path, content) -> None:
    path = tmp_path / "config.toml"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_settings(path)


def test_probe_timeout_defaults_to_half_the_interval_capped() -> None:
    assert TrackerSettings().effective_probe_timeout == timedelta(milliseconds=500)
    slow = TrackerSettings(tracking_interval=timedelta(seconds=10))
    assert slow.effective_probe_timeout == timedelta(seconds=2)


def test_deep_focus_gap_follows_gap_tolerance() -> None:
    assert TrackerSettings().deep_focus_gap == timedelta(seconds=3)
    assert TrackerSettings(gap_tolerance=0).deep_focus_gap == timedelta(seconds=1)


def test_focus_set_merges_stored_entries() -> None:
    settings = TrackerSettings(focus_apps=["Code"], focus_domains=["www.github.com"])

    focus_set = settings.focus_set(["blender"], ["docs.python.org"], ["1Password"])

    assert focus_set.classify(AppSubject("code")) is Classification.FOCUS
    assert focus_set.classify(AppSubject("Blender")) is Classification.FOCUS
    assert focus_set.classify(AppSubject("1password")) is Classification.IGNORED
    assert focus_set.classify(DomainSubject("firefox", "gist.github.com")) is Classification.FOCUS
    assert focus_set.classify(DomainSubject("firefox", "docs.python.org")) is Classification.FOCUS
    assert focus_set.classify(DomainSubject("firefox", "python.org")) is Classification.DISTRACTION


def test_default_config_round_trips(tmp_path) -> None:
    path = write_default_config(tmp_path / "nested" / "config.toml")

    settings = load_settings(path)

    assert settings.focus_apps == ["code", "nvim", "vim", "emacs"]
    assert settings.focus_domains == ["github.com", "docs.python.org"]
    assert settings.effective_probe_timeout == timedelta(milliseconds=500)


def test_default_config_is_not_overwritten_without_force(tmp_path) -> None:
    path = tmp_path / "config.toml"
    path.write_text("gap_tolerance = 5", encoding="utf-8")

    with pytest.raises(ConfigError):
        write_default_config(path)
    assert load_settings(path).gap_tolerance == 5

    write_default_config(path, force=True)
    assert load_settings(path).gap_tolerance == 2


def test_as_dict_uses_file_keys() -> None:
    data = TrackerSettings(focus_apps=["code"]).as_dict()

    assert data["tracking_interval_ms"] == 1000
    assert data["save_interval_ms"] == 30000
    assert data["probe_timeout_ms"] == 500
    assert data["focus_apps"] == ["code"]
    assert data["database_path"] is None


@pytest.mark.parametrize(
    ("key", "text", "expected"),
    [
        ("tracking_interval_ms", "2000", 2000),
        ("deep_focus_threshold_minutes", "22.5", 22.5),
        ("gap_tolerance", "3", 3),
        ("focus_apps", "code, blender ,", ["code", "blender"]),
        ("log_level", " debug ", "debug"),
    ],
)
def test_parse_setting_by_key(key, text, expected) -> None:
    assert parse_setting(key, text) == expected


def test_update_setting_keeps_other_keys(tmp_path) -> None:
    path = tmp_path / "config.toml"
    path.write_text(
        'gap_tolerance = 5\nfocus_sites = ["github.com"]\ndatabase_path = "C:\\\\focus\\\\db"\n',
        encoding="utf-8",
    )

    settings = update_setting(path, "save_interval_ms", "60000")

    assert settings.save_interval == timedelta(minutes=1)
    reloaded = load_settings(path)
    assert reloaded == settings
    assert reloaded.gap_tolerance == 5
    assert reloaded.focus_domains == ["github.com"]
    assert str(reloaded.database_path) == "C:\\focus\\db"
    assert "probe_timeout_ms" not in path.read_text(encoding="utf-8")


def test_update_setting_rejects_invalid_document(tmp_path) -> None:
    path = write_default_config(tmp_path / "config.toml")
    before = path.read_text(encoding="utf-8")

    with pytest.raises(ConfigError):
        update_setting(path, "save_interval_ms", "0")
    with pytest.raises(ConfigError):
        update_setting(path, "theme", "dark")

    assert path.read_text(encoding="utf-8") == before
