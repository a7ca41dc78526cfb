"""Tests for :mod:`act_harness.storage`."""

from __future__ import annotations

import io
import typing as typ
import zipfile

import pytest

from act_harness.errors import StorageError
from act_harness.storage import ArtifactsStorage, MockGCS, sanitize_gcs_name

if typ.TYPE_CHECKING:
    from pathlib import Path


def _zip_bytes(files: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture(name="storage")
def fixture_storage(tmp_path: Path) -> ArtifactsStorage:
    """Storage holding one ``dist-artifacts`` upload for run 42."""
    folder = tmp_path / "42" / "dist-artifacts"
    folder.mkdir(parents=True)
    nested = _zip_bytes({"plugin/plugin.json": b'{"id": "simple-frontend"}'})
    (folder / "dist-artifacts.zip").write_bytes(
        _zip_bytes({"plugin-1.0.0.zip": nested, "plugin-1.0.0.zip.sha1": b"abc"})
    )
    (tmp_path / "42" / "broken").mkdir()
    (tmp_path / "42" / "broken" / "broken.zip").write_bytes(b"not a zip")
    return ArtifactsStorage(tmp_path)


class TestArtifactsStorage:
    """Reading artifacts uploaded through act's artifact server."""

    def test_folder_lists_and_reads_files(self, storage: ArtifactsStorage) -> None:
        """Files of the artifact are listed and read by name."""
        with storage.get_folder("42", "dist-artifacts") as folder:
            assert folder.names() == ["plugin-1.0.0.zip", "plugin-1.0.0.zip.sha1"]
            assert folder.read_file("plugin-1.0.0.zip.sha1") == b"abc"

    def test_nested_zip(self, storage: ArtifactsStorage) -> None:
        """A plugin ZIP inside the artifact can be opened in turn."""
        with (
            storage.get_folder("42", "dist-artifacts") as folder,
            folder.open_zip("plugin-1.0.0.zip") as plugin,
        ):
            assert plugin.read("plugin/plugin.json") == b'{"id": "simple-frontend"}'

    def test_missing_file(self, storage: ArtifactsStorage) -> None:
        """Unknown files inside an artifact raise StorageError."""
        with (
            storage.get_folder("42", "dist-artifacts") as folder,
            pytest.raises(StorageError, match="has no file 'nope'"),
        ):
            folder.read_file("nope")

    def test_nested_file_that_is_not_a_zip(self, storage: ArtifactsStorage) -> None:
        """Opening a non-ZIP member as a ZIP raises StorageError."""
        with (
            storage.get_folder("42", "dist-artifacts") as folder,
            pytest.raises(StorageError, match="not a ZIP archive"),
        ):
            folder.open_zip("plugin-1.0.0.zip.sha1")

    @pytest.mark.parametrize(
        ("run_id", "name", "message"),
        [
            ("43", "dist-artifacts", "no artifact 'dist-artifacts' for run 43"),
            ("42", "broken", "cannot open artifact 'broken'"),
        ],
    )
    def test_unreadable_artifacts(
        self, storage: ArtifactsStorage, run_id: str, name: str, message: str
    ) -> None:
        """Missing and corrupt artifacts raise StorageError."""
        with pytest.raises(StorageError, match=message):
            storage.get_folder(run_id, name)


class TestMockGCS:
    """Reading objects copied into the mock GCS directory."""

    @pytest.fixture(name="gcs")
    def fixture_gcs(self, tmp_path: Path) -> MockGCS:
        """Bucket directory with two uploaded objects."""
        folder = tmp_path / "integration-artifacts" / "plugin" / "abc123"
        folder.mkdir(parents=True)
        (folder / "plugin.zip").write_bytes(b"zip")
        (folder / "plugin.zip.sha1").write_bytes(b"sha")
        return MockGCS(tmp_path)

    def test_get(self, gcs: MockGCS) -> None:
        """Objects are read by their slash-separated name."""
        assert gcs.get("integration-artifacts/plugin/abc123/plugin.zip") == b"zip"
        assert gcs.get("/integration-artifacts/plugin/abc123/plugin.zip") == b"zip"

    def test_list_and_files(self, gcs: MockGCS) -> None:
        """Entries are listed per prefix and recursively."""
        assert gcs.listdir("integration-artifacts/plugin") == ["abc123"]
        assert gcs.files() == [
            "integration-artifacts/plugin/abc123/plugin.zip",
            "integration-artifacts/plugin/abc123/plugin.zip.sha1",
        ]

    def test_missing_objects(self, gcs: MockGCS) -> None:
        """Missing objects and prefixes raise StorageError."""
        with pytest.raises(StorageError, match="cannot read mock GCS object"):
            gcs.get("integration-artifacts/nope.zip")
        with pytest.raises(StorageError, match="cannot list mock GCS path"):
            gcs.listdir("nope")

    def test_empty_bucket(self, tmp_path: Path) -> None:
        """A bucket directory that was never created holds no files."""
        assert MockGCS(tmp_path / "missing").files() == []

    def test_names_cannot_escape(self) -> None:
        """Parent directory segments are rejected."""
        with pytest.raises(StorageError, match="escapes the bucket"):
            sanitize_gcs_name("a/../../etc/passwd")
