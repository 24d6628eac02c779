"""Tests for YAML configuration loading and validation."""

from __future__ import annotations

from pathlib import Path

import allure
import pytest

from mavin.core.config import build_config, load_config, resolve_env_vars
from mavin.core.exceptions import ConfigurationError
from mavin.core.models.settings import LogLevel


@allure.epic("Mavin Cache")
@allure.feature("Configuration")
class TestLoadConfig:
    """Loading ``config.yaml`` from the working directory."""

    @staticmethod
    def write_config(directory: Path, content: str, name: str = "config.yaml") -> Path:
        path = directory / name
        path.write_text(content, encoding="utf-8")
        return path

    @allure.title("Empty file yields defaults")
    def test_empty_file_uses_defaults(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        self.write_config(tmp_path, "")

        config = load_config("config.yaml")

        assert config.local_cache.max_items == 100
        assert config.local_cache.ttl_seconds == 86400
        assert config.providers.priority == ["spotify", "deezer", "soundcloud"]
        assert config.providers.global_timeout_seconds == 8.0
        assert config.streams.max_failures == 3

    @allure.title("Environment placeholders are resolved")
    def test_env_placeholders(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("MAVIN_TEST_SPOTIFY_ID", "client-123")
        monkeypatch.delenv("MAVIN_TEST_MISSING", raising=False)
        self.write_config(
            tmp_path,
            """
providers:
  priority: [Deezer, spotify]
  spotify:
    client_id: ${MAVIN_TEST_SPOTIFY_ID}
    client_secret: ${MAVIN_TEST_MISSING}
logging:
  levels:
    console: debug
""",
        )

        config = load_config("config.yaml")

        assert config.providers.spotify.client_id == "client-123"
        assert config.providers.spotify.client_secret == ""
        assert config.providers.priority == ["deezer", "spotify"]
        assert config.logging.levels.console is LogLevel.DEBUG

    @pytest.mark.parametrize(
        "content",
        [
            "providers:\n  priority: [spotify, napster]\n",
            "providers:\n  priority: [deezer, deezer]\n",
            "local_cache:\n  max_items: 0\n",
            "- just\n- a list\n",
            "local_cache: [unclosed\n",
        ],
    )
    def test_invalid_content_raises(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, content: str) -> None:
        monkeypatch.chdir(tmp_path)
        self.write_config(tmp_path, content)

        with pytest.raises(ConfigurationError) as exc_info:
            load_config("config.yaml")
        assert exc_info.value.config_path == "config.yaml"

    def test_missing_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        with pytest.raises(ConfigurationError, match="not found"):
            load_config("nope.yaml")

    def test_wrong_extension(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        self.write_config(tmp_path, "{}", name="config.json")
        with pytest.raises(ConfigurationError, match=r"\.yaml or \.yml"):
            load_config("config.json")


@allure.epic("Mavin Cache")
@allure.feature("Configuration")
class TestConfigHelpers:
    def test_build_config_reports_field_path(self) -> None:
        with pytest.raises(ConfigurationError, match=r"providers\.global_timeout_seconds"):
            build_config({"providers": {"global_timeout_seconds": 0}})

    def test_resolve_env_vars_recurses(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAVIN_TEST_DIR", "/data")
        resolved = resolve_env_vars({"a": ["${MAVIN_TEST_DIR}", "$MAVIN_TEST_DIR/cache"], "b": 3, "c": "~/x"})
        assert resolved == {"a": ["/data", "/data/cache"], "b": 3, "c": str(Path("~/x").expanduser())}
