"""Tests for image reference parsing."""

import pytest

from talos_client.errors import InvalidReference, ReferenceNotTagged
from talos_client.reference import (
    ImageReference,
    extract_variant,
    parse_any_reference,
    parse_reference,
    with_tag,
)

DIGEST = "sha256:" + "a" * 64


class TestParseReference:
    """Test parse_reference."""

    def test_parses_factory_installer(self):
        ref = parse_reference("factory.talos.dev/installer/abc123:v1.6.0")

        assert ref.repository == "factory.talos.dev/installer/abc123"
        assert ref.tag == "v1.6.0"
        assert ref.digest is None
        assert ref.variant == "abc123"
        assert ref.domain == "factory.talos.dev"
        assert ref.path == "installer/abc123"
        assert str(ref) == "factory.talos.dev/installer/abc123:v1.6.0"

    def test_parses_registry_with_port(self):
        ref = parse_reference("localhost:5000/installer:v1.6.0")

        assert ref.repository == "localhost:5000/installer"
        assert ref.tag == "v1.6.0"
        assert ref.variant == "installer"

    def test_normalizes_docker_hub_names(self):
        ref = parse_reference("installer:v1.6.0")

        assert ref.repository == "docker.io/library/installer"
        assert str(ref) == "docker.io/library/installer:v1.6.0"

    def test_normalizes_legacy_docker_hub_domain(self):
        ref = parse_reference("index.docker.io/siderolabs/installer:v1.6.0")

        assert ref.repository == "docker.io/siderolabs/installer"

    def test_keeps_digest_next_to_tag(self):
        ref = parse_reference(f"ghcr.io/siderolabs/installer:v1.6.0@{DIGEST}")

        assert ref.tag == "v1.6.0"
        assert ref.digest == DIGEST
        assert str(ref) == f"ghcr.io/siderolabs/installer:v1.6.0@{DIGEST}"

    def test_rejects_untagged_name(self):
        with pytest.raises(ReferenceNotTagged):
            parse_reference("ghcr.io/siderolabs/installer")

    def test_rejects_digest_only_reference(self):
        with pytest.raises(ReferenceNotTagged):
            parse_reference(f"ghcr.io/siderolabs/installer@{DIGEST}")

    def test_rejects_bare_digest(self):
        with pytest.raises(ReferenceNotTagged):
            parse_reference(DIGEST)

    def test_rejects_bare_image_id(self):
        with pytest.raises(ReferenceNotTagged):
            parse_reference("a" * 64)

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "ghcr.io/SideroLabs/installer:v1.6.0",
            "ghcr.io/siderolabs/installer:",
            "ghcr.io//installer:v1.6.0",
            "ghcr.io/siderolabs/installer:v1.6.0@sha256:abc",
            "ghcr.io/siderolabs/installer:-bad",
        ],
    )
    def test_rejects_invalid_references(self, raw):
        with pytest.raises(InvalidReference):
            parse_reference(raw)

    def test_rejects_overlong_names(self):
        with pytest.raises(InvalidReference, match="255"):
            parse_reference("ghcr.io/" + "a" * 260 + ":v1")

    def test_not_tagged_is_an_invalid_reference(self):
        assert issubclass(ReferenceNotTagged, InvalidReference)

    def test_parse_any_reference_accepts_digest_only(self):
        ref = parse_any_reference(f"ghcr.io/siderolabs/installer@{DIGEST}")

        assert ref.tag is None
        assert ref.is_tagged is False
        assert ref.digest == DIGEST


class TestWithTag:
    """Test tag substitution."""

    def test_replaces_tag_and_keeps_repository(self):
        ref = parse_reference("factory.talos.dev/installer/abc123:v1.5.0")

        new_ref = with_tag(ref, "v1.6.0")

        assert new_ref.tag == "v1.6.0"
        assert new_ref.repository == ref.repository
        assert new_ref.variant == ref.variant
        assert str(new_ref) == "factory.talos.dev/installer/abc123:v1.6.0"
        assert ref.tag == "v1.5.0"

    def test_drops_digest(self):
        ref = parse_reference(f"ghcr.io/siderolabs/installer:v1.5.0@{DIGEST}")

        assert with_tag(ref, "v1.6.0").digest is None

    @pytest.mark.parametrize("tag", ["", "-v1", "v1/6", "v" * 129])
    def test_rejects_invalid_tags(self, tag):
        ref = parse_reference("ghcr.io/siderolabs/installer:v1.5.0")

        with pytest.raises(InvalidReference):
            with_tag(ref, tag)

    def test_rejects_reference_without_repository(self):
        with pytest.raises(InvalidReference):
            with_tag(ImageReference(repository="", digest=DIGEST), "v1.6.0")


class TestExtractVariant:
    """Test variant extraction."""

    def test_uses_last_path_segment(self):
        assert extract_variant("registry.example/org/myvariant") == "myvariant"

    def test_whole_string_without_separator(self):
        assert extract_variant("myvariant") == "myvariant"

    def test_trailing_separator_gives_empty_variant(self):
        assert extract_variant("registry.example/org/") == ""
