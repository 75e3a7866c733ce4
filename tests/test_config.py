"""Tests for environment-driven configuration."""

from pathlib import Path

import pytest

from lightbooru import config
from lightbooru.errors import ConfigError


def test_env_int(monkeypatch):
    monkeypatch.setenv("LIGHTBOORU_TEST_INT", " 12 ")
    assert config._env_int("LIGHTBOORU_TEST_INT", 3) == 12
    monkeypatch.setenv("LIGHTBOORU_TEST_INT", "")
    assert config._env_int("LIGHTBOORU_TEST_INT", 3) == 3


@pytest.mark.parametrize("raw", ["many", "0"])
def test_env_int_rejects_bad_values(monkeypatch, raw):
    monkeypatch.setenv("LIGHTBOORU_TEST_INT", raw)
    with pytest.raises(ConfigError):
        config._env_int("LIGHTBOORU_TEST_INT", 3, minimum=1)


def test_env_choice(monkeypatch):
    monkeypatch.setenv("LIGHTBOORU_TEST_CHOICE", "DHASH")
    assert config._env_choice("LIGHTBOORU_TEST_CHOICE", "phash", config.HASH_ALGORITHMS) == "dhash"
    monkeypatch.setenv("LIGHTBOORU_TEST_CHOICE", "md5")
    with pytest.raises(ConfigError):
        config._env_choice("LIGHTBOORU_TEST_CHOICE", "phash", config.HASH_ALGORITHMS)


def test_env_roots(monkeypatch, tmp_path):
    monkeypatch.setenv("LIGHTBOORU_ROOTS", f"{tmp_path / 'a'}{config.os.pathsep}~/b{config.os.pathsep}")
    assert config._env_roots() == [tmp_path / "a", Path("~/b").expanduser()]


def test_resolve_roots(tmp_path):
    assert config.resolve_roots(["~/x", tmp_path]) == [Path("~/x").expanduser(), tmp_path]
    assert config.resolve_roots(None) == config.ROOTS
    with pytest.raises(ConfigError):
        config.resolve_roots([])


def test_video_extensions_are_media():
    assert config.VIDEO_EXTENSIONS <= config.MEDIA_EXTENSIONS
