"""Version catalog: toolkit versions, driver minima and matching cuDNN releases.

The catalog is an immutable mapping built once at startup and injected
wherever it is needed. Operator-supplied versions are added by deriving a
new catalog with with_custom(), never by editing the built-in tables.
"""

import logging
from types import MappingProxyType
from typing import Mapping, Optional

from cuda_alongside.exceptions import VersionNotFoundError
from cuda_alongside.models.descriptors import (
    CompanionDescriptor,
    VersionDescriptor,
    version_key,
)

_CUDA_URL = "https://developer.download.nvidia.com/compute/cuda/{version}/local_installers/cuda_{version}_{driver}_linux.run"
_CUDNN_URL = "https://developer.download.nvidia.com/compute/cudnn/redist/cudnn/linux-x86_64/cudnn-linux-x86_64-{build}_cuda{major}-archive.tar.xz"

# version -> (family, minimum driver)
_BUILTIN_VERSIONS = {
    "12.6.2": ("12.6", "560.35.03"),
    "12.6.1": ("12.6", "560.35.03"),
    "12.6.0": ("12.6", "560.28.03"),
    "12.5.1": ("12.5", "555.42.06"),
    "12.4.1": ("12.4", "550.54.15"),
    "12.3.2": ("12.3", "545.23.08"),
    "12.2.2": ("12.2", "535.104.05"),
    "12.1.1": ("12.1", "530.30.02"),
    "12.0.1": ("12.0", "525.85.12"),
    "11.8.0": ("11.8", "520.61.05"),
    "11.7.1": ("11.7", "515.65.01"),
    "11.6.2": ("11.6", "510.47.03"),
    "11.4.4": ("11.4", "470.82.01"),
}

# family -> (cuDNN version, archive build)
_BUILTIN_COMPANIONS = {
    "12.6": ("8.9.7", "8.9.7.29"),
    "12.5": ("8.9.7", "8.9.7.29"),
    "12.4": ("8.9.7", "8.9.7.29"),
    "12.3": ("8.9.7", "8.9.7.29"),
    "12.2": ("8.9.7", "8.9.7.29"),
    "12.1": ("8.9.7", "8.9.7.29"),
    "12.0": ("8.9.7", "8.9.7.29"),
    "11.8": ("8.9.7", "8.9.7.29"),
    "11.7": ("8.9.7", "8.9.7.29"),
    "11.6": ("8.6.0", "8.6.0.163"),
    "11.4": ("8.2.4", "8.2.4.15"),
}


class VersionCatalog:
    """Read-only lookup of toolkit and companion descriptors."""

    def __init__(
        self,
        versions: Mapping[str, VersionDescriptor],
        companions: Mapping[str, CompanionDescriptor],
    ):
        """Initialize catalog.

        Args:
            versions: version string -> VersionDescriptor
            companions: family -> CompanionDescriptor

        Raises:
            ValueError: If a family has no companion entry
        """
        self.logger = logging.getLogger("cuda_alongside.catalog")
        missing = sorted(
            {d.family for d in versions.values()} - set(companions), key=version_key
        )
        if missing:
            raise ValueError(f"No companion mapping for families: {', '.join(missing)}")
        self._versions = MappingProxyType(dict(versions))
        self._companions = MappingProxyType(dict(companions))

    def versions(self) -> list[str]:
        """All known versions, sorted by version order."""
        return sorted(self._versions, key=version_key)

    def descriptors(self) -> list[VersionDescriptor]:
        return [self._versions[v] for v in self.versions()]

    def __contains__(self, version: str) -> bool:
        return version in self._versions

    def resolve(self, version: str) -> VersionDescriptor:
        """Look up a toolkit version.

        Args:
            version: Exact version string (e.g. "12.6.2")

        Returns:
            The matching VersionDescriptor

        Raises:
            VersionNotFoundError: If the version is unknown; carries the
                sorted list of known versions
        """
        try:
            return self._versions[version]
        except KeyError:
            known = self.versions()
            raise VersionNotFoundError(
                f"Unsupported CUDA version: {version}. Supported versions: {', '.join(known)}",
                known_versions=known,
            ) from None

    def companion_for(self, family: str) -> CompanionDescriptor:
        """Look up the cuDNN release for a toolkit family.

        Raises:
            VersionNotFoundError: If no companion is mapped for the family
        """
        try:
            return self._companions[family]
        except KeyError:
            raise VersionNotFoundError(
                f"No cuDNN mapping found for CUDA {family}",
                known_versions=self.versions(),
            ) from None

    def with_custom(
        self,
        descriptor: VersionDescriptor,
        companion: Optional[CompanionDescriptor] = None,
    ) -> "VersionCatalog":
        """Return a new catalog that also contains operator-supplied entries.

        Existing entries with the same key are replaced in the new catalog.
        """
        versions = dict(self._versions)
        versions[descriptor.version] = descriptor
        companions = dict(self._companions)
        if companion is not None:
            if companion.family != descriptor.family:
                raise ValueError(
                    f"Companion family {companion.family} does not match "
                    f"toolkit family {descriptor.family}"
                )
            companions[companion.family] = companion
        self.logger.info(
            f"Registered custom version {descriptor.version} (family {descriptor.family})"
        )
        return VersionCatalog(versions, companions)


def default_catalog() -> VersionCatalog:
    """Build the catalog of built-in CUDA and cuDNN releases."""
    versions = {
        version: VersionDescriptor(
            version=version,
            family=family,
            source=_CUDA_URL.format(version=version, driver=driver),
            min_driver=driver,
        )
        for version, (family, driver) in _BUILTIN_VERSIONS.items()
    }
    companions = {
        family: CompanionDescriptor(
            family=family,
            version=cudnn_version,
            source=_CUDNN_URL.format(build=build, major=family.split(".")[0]),
        )
        for family, (cudnn_version, build) in _BUILTIN_COMPANIONS.items()
    }
    return VersionCatalog(versions, companions)
