"""
Tests for manifest parsing and rewriting.
"""

import json

from conftest import dep, manifest_dict, write_package
from manifest import (
    Dependency,
    InstalledPackage,
    PackageManifest,
    RemotePackage,
    normalize_url,
    parse_manifest,
    read_manifest,
    update_source_url,
)


class TestParseManifest:
    def test_parses_all_fields(self):
        data = manifest_dict("ui-kit", version="1.2.0", category="UI",
                             dependencies=[dep("core", version="1.0", gitUrl="https://github.com/a/core")])
        result = parse_manifest(json.dumps(data))
        assert result.ok
        manifest = result.manifest
        assert manifest.name == "ui-kit"
        assert manifest.display_name == "Ui-Kit"
        assert manifest.category == "UI"
        assert manifest.dependencies == [Dependency("core", "https://github.com/a/core", "", "1.0")]

    def test_malformed_json_is_an_error_not_none(self):
        result = parse_manifest("{not json")
        assert not result.ok
        assert result.manifest is None
        assert result.error

    def test_missing_name_is_an_error(self):
        result = parse_manifest(json.dumps({"version": "1.0"}))
        assert not result.ok
        assert "name" in result.error

    def test_dependencies_must_be_a_list(self):
        result = parse_manifest(json.dumps({"name": "x", "dependencies": {"name": "y"}}))
        assert not result.ok

    def test_bom_prefixed_bytes(self):
        result = parse_manifest(b"\xef\xbb\xbf" + json.dumps({"name": "bom"}).encode("utf-8"))
        assert result.ok
        assert result.manifest.name == "bom"

    def test_round_trip_keeps_unknown_keys(self):
        data = manifest_dict("x", homepage="https://example.com")
        manifest = parse_manifest(json.dumps(data)).manifest
        assert manifest.to_dict()["homepage"] == "https://example.com"
        assert list(manifest.to_dict())[:9] == [
            "name", "displayName", "version", "description", "author",
            "category", "downloadUrl", "sourceUrl", "dependencies",
        ]


class TestReadAndUpdate:
    def test_read_missing_manifest(self, tmp_path):
        result = read_manifest(tmp_path)
        assert not result.ok

    def test_update_source_url_rewrites_manifest(self, tmp_path):
        write_package(tmp_path / "pkg", "pkg", extra_field=1)
        assert update_source_url(tmp_path / "pkg", "https://github.com/a/pkg")

        data = json.loads((tmp_path / "pkg" / "extension.json").read_text(encoding="utf-8"))
        assert data["sourceUrl"] == "https://github.com/a/pkg"
        assert data["extra_field"] == 1
        assert "folderPath" not in data

    def test_update_source_url_without_manifest(self, tmp_path):
        assert not update_source_url(tmp_path, "https://github.com/a/pkg")


class TestPackageRefs:
    def test_installed_and_remote_refs(self):
        manifest = PackageManifest(name="a", version="1.0")
        local = InstalledPackage.from_manifest(manifest, "/x/a")
        remote = RemotePackage.from_manifest(manifest, "A/extension.json", "https://github.com/o/r/tree/main/A")
        cached = RemotePackage.from_manifest(manifest, "A/extension.json", "", from_cache=True)

        assert local.to_ref().origin == "local"
        assert remote.to_ref().origin == "remote"
        assert cached.to_ref().origin == "cached"
        assert remote.remote_folder_name == "A"
        assert not remote.is_installed
        assert local.is_installed


class TestNormalizeUrl:
    def test_strips_scheme_and_suffix(self):
        assert normalize_url("https://github.com/a/b.git/") == "github.com/a/b"
        assert normalize_url("http://github.com/a/b") == "github.com/a/b"
        assert normalize_url("") == ""
