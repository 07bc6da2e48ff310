"""Timestamp and version helpers.

Every artifact of a run is stamped with a UTC timestamp in three shapes:
ISO-8601 for manifests, a file-name-safe variant for archive names, and a
compact numeric fragment used in the bundle's prerelease version.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import semver


@dataclass(frozen=True)
class Timestamp:
    """A moment rendered in the formats used by manifests and archives.

    Attributes:
        iso: "2024-05-01T12:30:45.123Z"
        file_safe: "2024-05-01T12-30-45-123Z" (':' and '.' → '-')
        semver_fragment: "20240501123045"
    """

    iso: str
    file_safe: str
    semver_fragment: str


def create_timestamp(moment: datetime | None = None) -> Timestamp:
    """Render `moment` (default: now) in UTC with millisecond precision."""
    moment = (moment or datetime.now(timezone.utc)).astimezone(timezone.utc)
    iso = moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"
    return Timestamp(
        iso=iso,
        file_safe=iso.replace(":", "-").replace(".", "-"),
        semver_fragment=moment.strftime("%Y%m%d%H%M%S"),
    )


def utc_now_iso() -> str:
    return create_timestamp().iso


def bundle_version(timestamp: Timestamp) -> str:
    """Prerelease version of the aggregate package.

    Example:
        semver_fragment "20240501123045" → "0.0.0-bleeding.20240501123045"
    """
    version = semver.Version(0, 0, 0, prerelease=f"bleeding.{timestamp.semver_fragment}")
    return str(version)
