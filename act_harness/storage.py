"""Readers for what a workflow run left behind on the host.

act's artifact server stores every ``actions/upload-artifact`` upload as a
ZIP file under ``<base>/<run id>/<name>/<name>.zip``. Mocked GCS uploads are
plain files copied into the directory mounted at ``/gcs``.
"""

from __future__ import annotations

import dataclasses
import io
import logging
import typing as typ
import zipfile
from pathlib import Path, PurePosixPath

from .errors import StorageError

if typ.TYPE_CHECKING:
    import types

__all__ = [
    "ARTIFACTS_BASE",
    "ArtifactFolder",
    "ArtifactsStorage",
    "MockGCS",
    "sanitize_gcs_name",
]

logger = logging.getLogger(__name__)

ARTIFACTS_BASE = Path("/tmp") / "act-artifacts"  # noqa: S108


class ArtifactFolder:
    """The files of one uploaded artifact, read from its ZIP archive.

    Close the folder, or use it as a context manager, to release the
    archive.
    """

    def __init__(self, archive: zipfile.ZipFile, *, name: str) -> None:
        self._archive = archive
        self.name = name

    def __enter__(self) -> ArtifactFolder:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: types.TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying archive."""
        self._archive.close()

    def names(self) -> list[str]:
        """Return the paths of every file in the artifact, sorted."""
        return sorted(
            info.filename for info in self._archive.infolist() if not info.is_dir()
        )

    def read_file(self, name: str) -> bytes:
        """Return the content of ``name``.

        Raises
        ------
        StorageError
            If the artifact has no such file.
        """
        try:
            return self._archive.read(name)
        except KeyError as exc:
            msg = f"artifact {self.name!r} has no file {name!r}"
            raise StorageError(msg) from exc

    def open_zip(self, name: str) -> zipfile.ZipFile:
        """Open the ZIP file ``name`` nested inside the artifact.

        Raises
        ------
        StorageError
            If the file is missing or not a ZIP archive.
        """
        content = self.read_file(name)
        try:
            return zipfile.ZipFile(io.BytesIO(content))
        except zipfile.BadZipFile as exc:
            msg = f"{name!r} in artifact {self.name!r} is not a ZIP archive"
            raise StorageError(msg) from exc


@dataclasses.dataclass(frozen=True, slots=True)
class ArtifactsStorage:
    """Artifacts uploaded through act's artifact server, keyed by run ID."""

    base_path: Path

    def run_folder(self, run_id: str) -> Path:
        """Return the directory holding the artifacts of ``run_id``."""
        return self.base_path / run_id

    def get_folder(self, run_id: str, artifact_name: str) -> ArtifactFolder:
        """Open the artifact ``artifact_name`` uploaded by run ``run_id``.

        Raises
        ------
        StorageError
            If the artifact does not exist or is not a ZIP archive.
        """
        path = self.run_folder(run_id) / artifact_name / f"{artifact_name}.zip"
        try:
            archive = zipfile.ZipFile(path)
        except FileNotFoundError as exc:
            msg = f"no artifact {artifact_name!r} for run {run_id}"
            raise StorageError(msg) from exc
        except (OSError, zipfile.BadZipFile) as exc:
            msg = f"cannot open artifact {artifact_name!r} for run {run_id}: {exc}"
            raise StorageError(msg) from exc
        logger.debug("Opened artifact %s", path)
        return ArtifactFolder(archive, name=artifact_name)


def sanitize_gcs_name(name: str) -> Path:
    """Return the relative host path for the GCS object ``name``.

    Raises
    ------
    StorageError
        If ``name`` would escape the bucket directory.

    Examples
    --------
    >>> sanitize_gcs_name("/integration-artifacts/plugin/a.zip").as_posix()
    'integration-artifacts/plugin/a.zip'
    """
    parts = [part for part in PurePosixPath(name).parts if part not in ("/", ".")]
    if ".." in parts:
        msg = f"GCS object name {name!r} escapes the bucket"
        raise StorageError(msg)
    return Path(*parts)


@dataclasses.dataclass(frozen=True, slots=True)
class MockGCS:
    """The local directory standing in for GCS buckets during a run."""

    base_path: Path

    def path(self, name: str) -> Path:
        """Return the host path of the object or prefix ``name``."""
        return self.base_path / sanitize_gcs_name(name)

    def get(self, name: str) -> bytes:
        """Return the content of the object ``name``.

        Raises
        ------
        StorageError
            If the object does not exist.
        """
        path = self.path(name)
        try:
            return path.read_bytes()
        except OSError as exc:
            msg = f"cannot read mock GCS object {name!r}: {exc.strerror or exc}"
            raise StorageError(msg) from exc

    def listdir(self, prefix: str = "") -> list[str]:
        """Return the entry names directly under ``prefix``, sorted.

        Raises
        ------
        StorageError
            If ``prefix`` is not a directory.
        """
        path = self.path(prefix)
        try:
            return sorted(entry.name for entry in path.iterdir())
        except OSError as exc:
            msg = f"cannot list mock GCS path {prefix!r}: {exc.strerror or exc}"
            raise StorageError(msg) from exc

    def files(self) -> list[str]:
        """Return every object name in the bucket directory, sorted."""
        if not self.base_path.is_dir():
            return []
        return sorted(
            path.relative_to(self.base_path).as_posix()
            for path in self.base_path.rglob("*")
            if path.is_file()
        )
