"""Tests for argument parsing, config resolution and command dispatch."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import allure
import pytest
import pytest_asyncio

from mavin.app.cli import CLI, main_async, resolve_config, run_command
from mavin.core.exceptions import ConfigurationError
from mavin.core.models.settings import AppConfig
from mavin.services.dependency_container import DependencyContainer

from tests.mocks import FakeProvider, FakeRelatedSource, MockLogger, spotify_track


@pytest_asyncio.fixture
async def container(app_config: AppConfig) -> AsyncIterator[DependencyContainer]:
    deps = DependencyContainer(
        app_config,
        MockLogger(),
        MockLogger(),
        providers=[FakeProvider("spotify", spotify_track())],
        related_source=FakeRelatedSource(),
    )
    await deps.initialize()
    yield deps
    await deps.close()


@allure.epic("Mavin Cache")
@allure.feature("CLI")
@allure.sub_suite("Arguments")
class TestArgumentParsing:
    def test_search_joins_words(self) -> None:
        args = CLI().parse_args(["search", "city", "boys", "burna", "boy"])
        assert args.command == "search"
        assert args.query == ["city", "boys", "burna", "boy"]
        assert args.config is None

    def test_report_failure_with_query(self) -> None:
        args = CLI().parse_args(["--config", "my.yaml", "report-failure", "abc", "--query", "city boys"])
        assert args.config == "my.yaml"
        assert args.stream_id == "abc"
        assert args.query == "city boys"

    def test_defaults(self) -> None:
        assert CLI().parse_args(["warm"]).limit == 50
        assert not CLI().parse_args(["jobs"]).once

    def test_command_is_required(self) -> None:
        with pytest.raises(SystemExit):
            CLI().parse_args([])


@allure.epic("Mavin Cache")
@allure.feature("CLI")
@allure.sub_suite("Configuration")
class TestResolveConfig:
    def test_defaults_without_files(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        config = resolve_config(None)
        assert config.local_cache.max_items == 100

    def test_prefers_my_config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        (tmp_path / "config.yaml").write_text("local_cache:\n  max_items: 20\n")
        (tmp_path / "my-config.yaml").write_text("local_cache:\n  max_items: 30\n")

        assert resolve_config(None).local_cache.max_items == 30

    def test_explicit_path(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        (tmp_path / "custom.yaml").write_text("streams:\n  max_failures: 5\n")

        assert resolve_config("custom.yaml").streams.max_failures == 5

    def test_missing_explicit_path(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        with pytest.raises(ConfigurationError):
            resolve_config("absent.yaml")


@allure.epic("Mavin Cache")
@allure.feature("CLI")
@allure.sub_suite("Commands")
class TestRunCommand:
    @pytest.mark.asyncio
    async def test_search_found(self, container: DependencyContainer) -> None:
        args = CLI().parse_args(["search", "city", "boys"])
        assert await run_command(container, args) == 0
        assert await container.cache_manager.get_search("city boys") is not None

    @pytest.mark.asyncio
    async def test_search_not_found(self, app_config: AppConfig) -> None:
        deps = DependencyContainer(app_config, MockLogger(), MockLogger(), providers=[FakeProvider("spotify", None)])
        await deps.initialize()
        try:
            assert await run_command(deps, CLI().parse_args(["search", "zzzz"])) == 1
        finally:
            await deps.close()

    @pytest.mark.parametrize("argv", [["stats"], ["warm", "--limit", "5"], ["clear"], ["jobs", "--once"]])
    @pytest.mark.asyncio
    async def test_maintenance_commands(self, container: DependencyContainer, argv: list[str]) -> None:
        assert await run_command(container, CLI().parse_args(argv)) == 0

    @pytest.mark.asyncio
    async def test_report_failure(self, container: DependencyContainer) -> None:
        assert await run_command(container, CLI().parse_args(["report-failure", "missing"])) == 1

        await run_command(container, CLI().parse_args(["search", "city", "boys"]))
        result = await container.cache_manager.get_search("city boys")
        assert result is not None and result.stream is not None

        args = CLI().parse_args(["report-failure", result.stream.id, "--query", "city boys"])
        assert await run_command(container, args) == 0


@allure.epic("Mavin Cache")
@allure.feature("CLI")
@allure.sub_suite("Entry point")
class TestMainAsync:
    @pytest.mark.asyncio
    async def test_configuration_error_exit_code(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        assert await main_async(["--config", "absent.yaml", "stats"]) == 2

    @pytest.mark.asyncio
    async def test_stats_end_to_end(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        (tmp_path / "config.yaml").write_text(
            "durable_store:\n"
            "  url: sqlite+aiosqlite:///cli.db\n"
            "local_cache:\n"
            "  directory: device\n"
            "providers:\n"
            "  deezer:\n"
            "    enabled: false\n"
            "logging:\n"
            "  logs_base_dir: logs\n"
        )

        assert await main_async(["stats"]) == 0
        assert (tmp_path / "cli.db").exists()
