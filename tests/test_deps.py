"""Tests for bleeding_build.deps."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from bleeding_build.deps import (
    PatchState,
    apply_local_dependency_patches,
    backup_path,
    patched_manifest,
    to_file_reference,
)
from bleeding_build.errors import PatchError
from bleeding_build.models import LocalPackageRef, PackageSpec, RepoState


@pytest.fixture
def make_ref(make_manifest):
    def _make(name: str, package_dir: Path) -> LocalPackageRef:
        spec = PackageSpec(name=name, repository=f"https://example.com/{name}.git")
        return LocalPackageRef(
            manifest=make_manifest(name),
            repo_state=RepoState(
                spec=spec, repo_dir=package_dir, dir_name=package_dir.name, branch="main"
            ),
            package_dir=package_dir,
        )

    return _make


class TestToFileReference:
    def test_sibling_directory(self, tmp_path: Path) -> None:
        value, relative = to_file_reference(tmp_path / "app", tmp_path / "core")
        assert value == "file:../core"
        assert relative == "../core"

    def test_nested_directory_gets_dot_prefix(self, tmp_path: Path) -> None:
        value, relative = to_file_reference(tmp_path / "app", tmp_path / "app" / "libs" / "x")
        assert value == "file:./libs/x"
        assert relative == "./libs/x"


class TestApplyLocalDependencyPatches:
    def test_rewrites_known_dependencies(
        self, tmp_path: Path, write_package_json, make_ref
    ) -> None:
        app_dir = tmp_path / "app"
        write_package_json(
            app_dir,
            {
                "name": "app",
                "version": "2.0.0",
                "dependencies": {"@test/core": "^1.0.0", "left-pad": "1.3.0"},
                "devDependencies": {"@test/viewer": "~0.4.0"},
            },
        )
        available = {
            "@test/core": make_ref("@test/core", tmp_path / "core"),
            "@test/viewer": make_ref("@test/viewer", tmp_path / "viewer"),
        }

        patch = apply_local_dependency_patches(app_dir, available)

        written = json.loads((app_dir / "package.json").read_text())
        assert written["dependencies"] == {"@test/core": "file:../core", "left-pad": "1.3.0"}
        assert written["devDependencies"] == {"@test/viewer": "file:../viewer"}
        assert patch.changed
        assert patch.local_dependencies["@test/core"].relative_path == "../core"
        assert patch.local_dependencies["@test/core"].original_version == "^1.0.0"
        assert patch.local_dependencies["@test/viewer"].original_version == "~0.4.0"
        assert patch.package_name == "app"
        assert patch.version == "2.0.0"

    def test_first_section_records_original_version(
        self, tmp_path: Path, write_package_json, make_ref
    ) -> None:
        app_dir = tmp_path / "app"
        write_package_json(
            app_dir,
            {
                "name": "app",
                "dependencies": {"@test/core": "^1.0.0"},
                "peerDependencies": {"@test/core": "*"},
            },
        )
        available = {"@test/core": make_ref("@test/core", tmp_path / "core")}

        patch = apply_local_dependency_patches(app_dir, available)

        written = json.loads((app_dir / "package.json").read_text())
        assert written["peerDependencies"]["@test/core"] == "file:../core"
        assert patch.local_dependencies["@test/core"].original_version == "^1.0.0"

    def test_skips_self_reference(
        self, tmp_path: Path, write_package_json, make_ref
    ) -> None:
        core_dir = tmp_path / "core"
        write_package_json(
            core_dir, {"name": "@test/core", "devDependencies": {"@test/core": "1.0.0"}}
        )
        available = {"@test/core": make_ref("@test/core", core_dir)}

        patch = apply_local_dependency_patches(core_dir, available)

        assert not patch.changed
        written = json.loads((core_dir / "package.json").read_text())
        assert written["devDependencies"]["@test/core"] == "1.0.0"

    def test_no_matches_leaves_file_untouched(
        self, tmp_path: Path, write_package_json
    ) -> None:
        app_dir = tmp_path / "app"
        path = write_package_json(app_dir, {"name": "app", "dependencies": {"x": "1"}})
        before = path.read_text()

        patch = apply_local_dependency_patches(app_dir, {})

        assert not patch.changed
        assert patch.patched == patch.original
        assert path.read_text() == before

    def test_disable_computes_nothing_but_backs_up(
        self, tmp_path: Path, write_package_json, make_ref
    ) -> None:
        app_dir = tmp_path / "app"
        write_package_json(app_dir, {"name": "app", "dependencies": {"@test/core": "1"}})
        available = {"@test/core": make_ref("@test/core", tmp_path / "core")}

        patch = apply_local_dependency_patches(app_dir, available, disable=True)

        assert patch.local_dependencies == {}
        assert backup_path(app_dir).exists()

    def test_starts_from_backup(
        self, tmp_path: Path, write_package_json, make_ref
    ) -> None:
        """A package.json left patched by an interrupted run is repaired."""
        app_dir = tmp_path / "app"
        write_package_json(app_dir, {"name": "app", "dependencies": {"@test/core": "^1.0.0"}})
        available = {"@test/core": make_ref("@test/core", tmp_path / "core")}
        apply_local_dependency_patches(app_dir, available)  # never restored

        patch = apply_local_dependency_patches(app_dir, available)

        assert patch.local_dependencies["@test/core"].original_version == "^1.0.0"
        patch.restore()
        restored = json.loads((app_dir / "package.json").read_text())
        assert restored["dependencies"]["@test/core"] == "^1.0.0"

    def test_missing_package_json_raises(self, tmp_path: Path) -> None:
        with pytest.raises(PatchError, match="No package.json"):
            apply_local_dependency_patches(tmp_path, {})

    def test_malformed_package_json_raises(self, tmp_path: Path) -> None:
        (tmp_path / "package.json").write_text("{not json")
        with pytest.raises(PatchError, match="Failed to parse"):
            apply_local_dependency_patches(tmp_path, {})

    def test_non_object_package_json_raises(self, tmp_path: Path) -> None:
        (tmp_path / "package.json").write_text("[]")
        with pytest.raises(PatchError, match="JSON object"):
            apply_local_dependency_patches(tmp_path, {})


class TestManifestPatchRestore:
    def test_restores_original_bytes(
        self, tmp_path: Path, write_package_json, make_ref
    ) -> None:
        app_dir = tmp_path / "app"
        path = write_package_json(app_dir, {"name": "app", "dependencies": {"@test/core": "1"}})
        original = path.read_text()
        patch = apply_local_dependency_patches(
            app_dir, {"@test/core": make_ref("@test/core", tmp_path / "core")}
        )
        assert path.read_text() != original

        assert patch.restore() is PatchState.RESTORED
        assert path.read_text() == original

    def test_double_restore_raises(self, tmp_path: Path, write_package_json) -> None:
        write_package_json(tmp_path, {"name": "app"})
        patch = apply_local_dependency_patches(tmp_path, {})
        patch.restore()

        with pytest.raises(PatchError, match="already restored"):
            patch.restore()


class TestPatchedManifest:
    def test_restores_when_block_raises(
        self, tmp_path: Path, write_package_json, make_ref
    ) -> None:
        path = write_package_json(tmp_path / "app", {"name": "app", "dependencies": {"@test/core": "1"}})
        original = path.read_text()
        available = {"@test/core": make_ref("@test/core", tmp_path / "core")}

        with pytest.raises(RuntimeError):
            with patched_manifest(tmp_path / "app", available) as patch:
                assert patch.changed
                raise RuntimeError("build failed")

        assert patch.state is PatchState.RESTORED
        assert path.read_text() == original

    def test_crlf_file_restored_byte_for_byte(self, tmp_path: Path, make_ref) -> None:
        app_dir = tmp_path / "app"
        app_dir.mkdir()
        original = b'{\r\n  "name": "app",\r\n  "dependencies": {"@test/core": "^1.0.0"}\r\n}\r\n'
        path = app_dir / "package.json"
        path.write_bytes(original)
        available = {"@test/core": make_ref("@test/core", tmp_path / "core")}

        with patched_manifest(app_dir, available) as patch:
            assert patch.changed
            patched_bytes = path.read_bytes()
            assert b'"file:../core"' in patched_bytes
            assert b"\r\n" in patched_bytes

        assert path.read_bytes() == original
        assert backup_path(app_dir).read_bytes() == original

    def test_crlf_file_untouched_without_matches(self, tmp_path: Path) -> None:
        original = b'{\r\n  "name": "app",\r\n  "dependencies": {"left-pad": "1.3.0"}\r\n}\r\n'
        path = tmp_path / "package.json"
        path.write_bytes(original)

        with patched_manifest(tmp_path, {}) as patch:
            assert not patch.changed
            assert path.read_bytes() == original

        assert path.read_bytes() == original
