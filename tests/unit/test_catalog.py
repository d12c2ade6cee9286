"""Unit tests for VersionCatalog."""

import pytest

from cuda_alongside.exceptions import VersionNotFoundError
from cuda_alongside.models.descriptors import CompanionDescriptor, VersionDescriptor
from cuda_alongside.services.catalog import VersionCatalog, default_catalog


@pytest.mark.unit
class TestVersionCatalog:
    """Test catalog lookups and custom registration."""

    def test_resolve_known_version(self, catalog):
        descriptor = catalog.resolve("12.6.2")

        assert descriptor.family == "12.6"
        assert descriptor.min_driver == "560.35.03"
        assert descriptor.source.endswith("cuda_12.6.2_560.35.03_linux.run")
        assert descriptor.family_tag == "126"
        assert descriptor.priority == 126

    def test_resolve_unknown_lists_sorted_versions(self, catalog):
        with pytest.raises(VersionNotFoundError) as exc_info:
            catalog.resolve("99.9.9")

        known = exc_info.value.known_versions
        assert known[0] == "11.4.4"
        assert known[-1] == "12.6.2"
        assert known.index("11.8.0") < known.index("12.0.1")
        assert "99.9.9" in exc_info.value.message

    def test_versions_sorted_numerically(self, catalog):
        versions = catalog.versions()
        assert versions == sorted(versions, key=lambda v: tuple(int(x) for x in v.split(".")))

    def test_companion_for_family(self, catalog):
        companion = catalog.companion_for("11.6")

        assert companion.version == "8.6.0"
        assert "cuda11" in companion.source

    def test_companion_for_unknown_family(self, catalog):
        with pytest.raises(VersionNotFoundError, match="No cuDNN mapping"):
            catalog.companion_for("10.2")

    def test_every_family_has_companion(self, catalog):
        for descriptor in catalog.descriptors():
            assert catalog.companion_for(descriptor.family).family == descriptor.family

    def test_missing_companion_rejected(self):
        descriptor = VersionDescriptor(
            version="13.0.1", family="13.0", source="/tmp/cuda.run", min_driver="580.65.06"
        )

        with pytest.raises(ValueError, match="13.0"):
            VersionCatalog({"13.0.1": descriptor}, {})

    def test_with_custom_returns_new_catalog(self, catalog):
        descriptor = VersionDescriptor(
            version="13.0.1",
            family="13.0",
            source="https://example.com/cuda_13.0.1_linux.run",
            min_driver="580.65.06",
        )
        companion = CompanionDescriptor(
            family="13.0", version="9.12.0", source="https://example.com/cudnn.tar.xz"
        )

        extended = catalog.with_custom(descriptor, companion)

        assert extended.resolve("13.0.1") == descriptor
        assert extended.companion_for("13.0") == companion
        assert "13.0.1" not in catalog
        assert extended.versions()[-1] == "13.0.1"

    def test_with_custom_family_mismatch(self, catalog):
        descriptor = VersionDescriptor(
            version="13.0.1", family="13.0", source="/tmp/cuda.run", min_driver="580"
        )
        companion = CompanionDescriptor(family="12.6", version="9.0", source="/tmp/cudnn.tgz")

        with pytest.raises(ValueError, match="does not match"):
            catalog.with_custom(descriptor, companion)

    def test_default_catalog_is_fresh_each_call(self):
        assert default_catalog().versions() == default_catalog().versions()


@pytest.mark.unit
class TestVersionDescriptor:
    """Test descriptor validation and derived values."""

    def test_descriptor_is_frozen(self, catalog):
        descriptor = catalog.resolve("11.8.0")
        with pytest.raises(Exception):
            descriptor.family = "12.0"

    def test_family_must_match_version(self):
        with pytest.raises(ValueError, match="does not belong"):
            VersionDescriptor(version="12.6.2", family="12.5", source="x", min_driver="560")

    def test_invalid_min_driver(self):
        with pytest.raises(ValueError):
            VersionDescriptor(version="12.6.2", family="12.6", source="x", min_driver="abc")

    @pytest.mark.parametrize(
        "family,priority",
        [("11.8", 118), ("12.6", 126), ("13.0", 130), ("9.2", 92)],
    )
    def test_priority_from_family(self, family, priority):
        descriptor = VersionDescriptor(
            version=f"{family}.0", family=family, source="x", min_driver="400"
        )
        assert descriptor.priority == priority
