"""Tests for bleeding_build.config."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from bleeding_build.config import (
    DEFAULT_PLAN,
    BuildOptions,
    BuildSettings,
    default_concurrency,
    expand_repository,
)
from bleeding_build.models import PackageSpec


class TestDefaultConcurrency:
    @pytest.mark.parametrize(
        ("cpus", "expected"), [(None, 1), (1, 1), (2, 1), (4, 3), (16, 4)]
    )
    def test_bounds(self, cpus: int | None, expected: int) -> None:
        with patch("bleeding_build.config.os.cpu_count", return_value=cpus):
            assert default_concurrency() == expected


class TestBuildSettingsFromEnv:
    def test_defaults(self) -> None:
        settings = BuildSettings.from_env({})

        assert settings.concurrency == default_concurrency()
        assert settings.group_filter is None
        assert not settings.skip_builds
        assert not settings.disable_patch
        assert not settings.skip_package_packs
        assert not settings.patching_disabled

    def test_reads_variables(self) -> None:
        settings = BuildSettings.from_env(
            {
                "BLEEDING_CONCURRENCY": "6",
                "BLEEDING_GROUP_FILTER": "group-1, group-3,",
                "BLEEDING_SKIP_BUILDS": "1",
                "BLEEDING_SKIP_PACKAGE_PACKS": "1",
            }
        )

        assert settings.concurrency == 6
        assert settings.group_filter == frozenset({"group-1", "group-3"})
        assert settings.includes_group("group-3")
        assert not settings.includes_group("group-2")
        assert settings.skip_builds
        assert settings.patching_disabled
        assert settings.skip_package_packs

    def test_flags_require_one(self) -> None:
        settings = BuildSettings.from_env({"BLEEDING_DISABLE_PATCH": "true"})
        assert not settings.disable_patch

    @pytest.mark.parametrize("raw", ["zero", "0", "-2"])
    def test_invalid_concurrency_falls_back(
        self, raw: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        settings = BuildSettings.from_env({"BLEEDING_CONCURRENCY": raw})

        assert settings.concurrency == default_concurrency()
        assert "BLEEDING_CONCURRENCY" in capsys.readouterr().err


class TestBuildOptionsSelects:
    def test_no_filter_selects_everything(self) -> None:
        spec = PackageSpec(name="@test/core", repository="x")
        assert BuildOptions().selects(spec)

    def test_matches_name_or_dir_name(self) -> None:
        options = BuildOptions(only_packages=["@test/core", "test-app"])

        assert options.selects(PackageSpec(name="@test/core", repository="x"))
        assert options.selects(PackageSpec(name="@test/app", repository="x"))
        assert not options.selects(PackageSpec(name="@test/viewer", repository="x"))


class TestExpandRepository:
    def test_slug(self) -> None:
        assert expand_repository("tscircuit/core") == "https://github.com/tscircuit/core.git"

    def test_slug_with_suffix(self) -> None:
        assert expand_repository("tscircuit/core.git") == "https://github.com/tscircuit/core.git"

    def test_urls_pass_through(self) -> None:
        assert expand_repository("https://gitlab.com/a/b.git") == "https://gitlab.com/a/b.git"
        assert expand_repository("git@github.com:a/b.git") == "git@github.com:a/b.git"


class TestDefaultPlan:
    def test_group_order(self) -> None:
        assert [group.id for group in DEFAULT_PLAN.groups] == [
            "group-1",
            "group-2",
            "group-3",
            "group-4",
        ]
        assert DEFAULT_PLAN.groups[-1].packages[0].name == "tscircuit"

    def test_core_builds_first(self) -> None:
        core = DEFAULT_PLAN.groups[0].packages[0]
        assert core.name == "@tscircuit/core"
        assert core.resolved_dir_name == "tscircuit-core"
        assert core.repository == "https://github.com/tscircuit/core.git"
