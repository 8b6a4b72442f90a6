"""
Check Updates - Update Aggregator
Turns package identifiers and update detail notifications into update records.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

logger = logging.getLogger(__name__)

PACKAGE_ID_SEPARATOR = ";"
UNKNOWN_VERSION = "unknown"
SECURITY_MARKER = "CVE-"


@dataclass(frozen=True)
class UpdateRecord:
    """A pending update for one package."""
    package_id: str     # Service identifier, e.g. "openssl;3.0.2-0ubuntu1.15;amd64;updates"
    name: str
    version: str
    is_security: bool = False

    @property
    def display(self) -> str:
        tag = " (SECURITY)" if self.is_security else ""
        return f"{self.name} {self.version}{tag}"


def parse_package_id(package_id: str, is_security: bool = False) -> Optional[UpdateRecord]:
    """
    Split a package identifier into name and version.

    Fields after the version (arch, repository) are ignored. A missing
    version becomes "unknown".

    Returns:
        UpdateRecord, or None if the identifier has no name.
    """
    parts = package_id.split(PACKAGE_ID_SEPARATOR)
    name = parts[0].strip()
    if not name:
        return None
    version = parts[1] if len(parts) > 1 and parts[1] else UNKNOWN_VERSION
    return UpdateRecord(
        package_id=package_id,
        name=name,
        version=version,
        is_security=is_security,
    )


def is_security_detail(cve_urls: Iterable[str], update_text: str = "", changelog: str = "") -> bool:
    """An update is security-relevant if it has CVE references or mentions one."""
    if tuple(cve_urls):
        return True
    return SECURITY_MARKER in (update_text or "") or SECURITY_MARKER in (changelog or "")


def build_update_records(
    package_ids: Iterable[str],
    classifications: Mapping[str, bool],
) -> list[UpdateRecord]:
    """
    Build one record per enumerated identifier, keeping enumeration order.

    Identifiers without a classification count as non-security.
    Malformed identifiers are skipped.
    """
    records = []
    for package_id in package_ids:
        if package_id not in classifications:
            logger.debug(f"No update detail received for {package_id}")
        record = parse_package_id(package_id, classifications.get(package_id, False))
        if record is None:
            logger.warning(f"Skipping malformed package id: {package_id!r}")
            continue
        records.append(record)
    return records
