"""Latest tool versions from the official Node.js and Go release indexes.

Lookups are single blocking requests with a fixed timeout. Errors are
surfaced immediately as :class:`~act_harness.errors.VersionLookupError`;
nothing is retried.
"""

from __future__ import annotations

import logging
import re
import typing as typ

import httpx

from .errors import VersionLookupError

__all__ = [
    "GO_RELEASES_URL",
    "HTTP_TIMEOUT",
    "NODE_RELEASES_URL",
    "latest_go_version",
    "latest_node_version",
]

logger = logging.getLogger(__name__)

NODE_RELEASES_URL = "https://nodejs.org/download/release/index.json"
GO_RELEASES_URL = "https://golang.org/dl/?mode=json&include=all"
HTTP_TIMEOUT = 30.0

_GO_VERSION_RE = re.compile(r"^\d+(?:\.\d+)*$")


def _fetch_json(url: str) -> typ.Any:  # noqa: ANN401
    try:
        with httpx.Client(timeout=httpx.Timeout(HTTP_TIMEOUT)) as client:
            response = client.get(url, follow_redirects=True)
    except httpx.HTTPError as exc:
        msg = f"fetch {url}: {exc}"
        raise VersionLookupError(msg) from exc
    if response.status_code != httpx.codes.OK:
        msg = f"fetch {url}: status {response.status_code}"
        raise VersionLookupError(msg)
    try:
        return response.json()
    except ValueError as exc:
        msg = f"decode JSON from {url}: {exc}"
        raise VersionLookupError(msg) from exc


def _releases(url: str) -> list[dict[str, typ.Any]]:
    payload = _fetch_json(url)
    if not isinstance(payload, list):
        msg = f"unexpected release index format from {url}"
        raise VersionLookupError(msg)
    return [item for item in payload if isinstance(item, dict)]


def latest_node_version(major: str) -> str:
    """Return the newest Node.js release for ``major``, e.g. ``v24.12.0``.

    The index is sorted newest first, so the first match wins.

    Raises
    ------
    VersionLookupError
        If the index cannot be fetched or has no release for ``major``.
    """
    prefix = f"v{major}."
    for release in _releases(NODE_RELEASES_URL):
        version = release.get("version")
        if isinstance(version, str) and version.startswith(prefix):
            logger.debug("Latest Node.js %s release is %s", major, version)
            return version
    msg = f"no releases found for Node.js major version {major!r}"
    raise VersionLookupError(msg)


def _version_key(version: str) -> tuple[int, ...]:
    parts = [int(part) for part in version.split(".")]
    # 1.25 sorts as 1.25.0
    return tuple(parts + [0] * (3 - len(parts)))


def latest_go_version(major_minor: str) -> str:
    """Return the newest stable Go release for ``major_minor``, e.g. ``1.25.6``.

    Raises
    ------
    VersionLookupError
        If the index cannot be fetched or has no stable release for
        ``major_minor``.
    """
    prefix = f"go{major_minor}"
    candidates: list[str] = []
    for release in _releases(GO_RELEASES_URL):
        version = release.get("version")
        if release.get("stable") is not True or not isinstance(version, str):
            continue
        if version == prefix or version.startswith(f"{prefix}."):
            number = version.removeprefix("go")
            if _GO_VERSION_RE.match(number):
                candidates.append(number)
    if not candidates:
        msg = f"no stable releases found for Go version {major_minor!r}"
        raise VersionLookupError(msg)
    latest = max(candidates, key=_version_key)
    logger.debug("Latest Go %s release is %s", major_minor, latest)
    return latest
