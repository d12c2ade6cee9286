"""Version and companion descriptors resolved from the catalog."""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_FAMILY_RE = re.compile(r"^\d+\.\d+$")


def version_key(version: str) -> tuple:
    """Sort key ordering dotted versions numerically ("11.8.0" < "12.0.1")."""
    parts = []
    for part in version.split("."):
        parts.append(int(part) if part.isdigit() else -1)
    return tuple(parts)


def family_of(version: str) -> str:
    """Derive the major.minor family from a full version string."""
    parts = version.split(".")
    if len(parts) < 2:
        raise ValueError(f"Cannot derive family from version: {version}")
    return f"{parts[0]}.{parts[1]}"


def driver_major(driver_version: str) -> int:
    """Leading numeric component of a driver identifier ("560.35.03" -> 560)."""
    head = driver_version.strip().split(".")[0]
    if not head.isdigit():
        raise ValueError(f"Invalid driver version: {driver_version!r}")
    return int(head)


class VersionDescriptor(BaseModel):
    """A resolved toolkit version.

    Immutable once resolved; created once per run from a catalog lookup.
    """

    model_config = ConfigDict(frozen=True)

    version: str = Field(..., pattern=r"^\d+\.\d+(\.\d+)*$", description="Full toolkit version")
    family: str = Field(..., description="major.minor family (e.g. 12.6)")
    source: str = Field(..., min_length=1, description="Installer URL or local path")
    min_driver: str = Field(..., description="Minimum compatible driver version")

    @field_validator("family")
    @classmethod
    def family_is_major_minor(cls, v: str) -> str:
        if not _FAMILY_RE.match(v):
            raise ValueError(f"Family must be major.minor, got {v!r}")
        return v

    @field_validator("min_driver")
    @classmethod
    def min_driver_is_numeric(cls, v: str) -> str:
        driver_major(v)
        return v

    @model_validator(mode="after")
    def version_in_family(self) -> "VersionDescriptor":
        if family_of(self.version) != self.family:
            raise ValueError(
                f"Version {self.version} does not belong to family {self.family}"
            )
        return self

    @property
    def family_tag(self) -> str:
        """Family without the dot, used in file names ("12.6" -> "126")."""
        return self.family.replace(".", "")

    @property
    def priority(self) -> int:
        """Alternatives priority, monotonic in the family ("12.6" -> 126, "13.0" -> 130)."""
        return int(self.family_tag)

    @property
    def required_driver_major(self) -> int:
        return driver_major(self.min_driver)


class CompanionDescriptor(BaseModel):
    """cuDNN release matched to a toolkit family."""

    model_config = ConfigDict(frozen=True)

    family: str = Field(..., pattern=r"^\d+\.\d+$", description="Toolkit family")
    version: str = Field(..., min_length=1, description="Companion library version")
    source: str = Field(..., min_length=1, description="Archive URL or local path")
