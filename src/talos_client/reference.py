"""
Container image reference parsing.

Follows the Docker distribution reference grammar:

    reference := name [ ":" tag ] [ "@" digest ]
    name      := [domain '/'] path-component ['/' path-component]*

Names without a registry domain are normalized to Docker Hub, the same way
container runtimes resolve them, so ``installer:v1`` becomes
``docker.io/library/installer:v1``.
"""

import re
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from .errors import InvalidReference, ReferenceNotTagged

DEFAULT_DOMAIN = "docker.io"
LEGACY_DEFAULT_DOMAIN = "index.docker.io"
OFFICIAL_REPO_PREFIX = "library/"
NAME_TOTAL_LENGTH_MAX = 255

_ALPHANUMERIC = r"[a-z0-9]+"
_SEPARATOR = r"(?:[._]|__|[-]+)"
_PATH_COMPONENT = rf"{_ALPHANUMERIC}(?:{_SEPARATOR}{_ALPHANUMERIC})*"
_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_DOMAIN_NAME = rf"{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*"
_IPV6_ADDRESS = r"\[(?:[a-fA-F0-9:]+)\]"
_DOMAIN = rf"(?:{_DOMAIN_NAME}|{_IPV6_ADDRESS})(?::[0-9]+)?"
_NAME = rf"(?:{_DOMAIN}/)?{_PATH_COMPONENT}(?:/{_PATH_COMPONENT})*"
_TAG = r"[\w][\w.-]{0,127}"
_DIGEST = r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}"

REFERENCE_RE = re.compile(rf"^({_NAME})(?::({_TAG}))?(?:@({_DIGEST}))?$", re.ASCII)
TAG_RE = re.compile(rf"^{_TAG}$", re.ASCII)
DIGEST_RE = re.compile(rf"^{_DIGEST}$")
IDENTIFIER_RE = re.compile(r"^[a-f0-9]{64}$")

# Hex lengths of the digest algorithms registries accept.
_DIGEST_HEX_LENGTHS = {"sha256": 64, "sha384": 96, "sha512": 128}


def extract_variant(repository: str) -> str:
    """Return the final path segment of a repository (the whole string if it has no '/')."""
    return repository[repository.rfind("/") + 1:]


@dataclass(frozen=True)
class ImageReference:
    """A parsed, normalized image reference."""
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @property
    def variant(self) -> str:
        return extract_variant(self.repository)

    @property
    def domain(self) -> str:
        return self.repository.split("/", 1)[0]

    @property
    def path(self) -> str:
        return self.repository.split("/", 1)[1] if "/" in self.repository else self.repository

    @property
    def is_tagged(self) -> bool:
        return self.tag is not None

    def __str__(self) -> str:
        value = self.repository
        if self.tag:
            value += f":{self.tag}"
        if self.digest:
            value += f"@{self.digest}"
        return value


def _validate_digest(raw: str, digest: str) -> None:
    algorithm, _, encoded = digest.partition(":")
    expected = _DIGEST_HEX_LENGTHS.get(algorithm)
    if expected is None:
        raise InvalidReference(f"unsupported digest algorithm in {raw!r}")
    if len(encoded) != expected or encoded.lower() != encoded:
        raise InvalidReference(f"invalid {algorithm} digest in {raw!r}")


def _split_domain(name: str) -> Tuple[str, str]:
    index = name.find("/")
    first = name[:index] if index != -1 else ""
    if index == -1 or (
        not any(ch in first for ch in ".:") and first != "localhost" and first.lower() == first
    ):
        domain, remainder = DEFAULT_DOMAIN, name
    else:
        domain, remainder = first, name[index + 1:]
    if domain == LEGACY_DEFAULT_DOMAIN:
        domain = DEFAULT_DOMAIN
    if domain == DEFAULT_DOMAIN and "/" not in remainder:
        remainder = OFFICIAL_REPO_PREFIX + remainder
    return domain, remainder


def parse_any_reference(raw: str) -> ImageReference:
    """
    Parse a reference that may be a name, a name with tag/digest, or a bare digest.

    Raises:
        InvalidReference: If the string cannot be decomposed.
    """
    if not raw:
        raise InvalidReference("repository name must have at least one component")

    if IDENTIFIER_RE.match(raw):
        return ImageReference(repository="", digest=f"sha256:{raw}")
    if DIGEST_RE.match(raw) and raw.partition(":")[0] in _DIGEST_HEX_LENGTHS:
        _validate_digest(raw, raw)
        return ImageReference(repository="", digest=raw)

    domain, remainder = _split_domain(raw)
    name_part = remainder.split("@", 1)[0].rsplit(":", 1)[0]
    if name_part.lower() != name_part:
        raise InvalidReference(f"repository name must be lowercase: {raw!r}")

    match = REFERENCE_RE.match(f"{domain}/{remainder}")
    if not match:
        raise InvalidReference(f"invalid reference format: {raw!r}")

    repository, tag, digest = match.groups()
    if len(repository) > NAME_TOTAL_LENGTH_MAX:
        raise InvalidReference(
            f"repository name must not be more than {NAME_TOTAL_LENGTH_MAX} characters"
        )
    if digest:
        _validate_digest(raw, digest)
    return ImageReference(repository=repository, tag=tag, digest=digest)


def parse_reference(raw: str) -> ImageReference:
    """
    Parse an image reference that must carry a tag.

    Raises:
        InvalidReference: If the string is not a valid reference.
        ReferenceNotTagged: If the reference has no tag (e.g. digest only).
    """
    ref = parse_any_reference(raw)
    if not ref.repository or not ref.is_tagged:
        raise ReferenceNotTagged(f"image reference {raw!r} has no tag")
    return ref


def with_tag(ref: ImageReference, tag: str) -> ImageReference:
    """
    Return a copy of ``ref`` with its tag replaced.

    The repository (and therefore the variant) is kept as is. Any digest is
    dropped since it pins the old tag's content.
    """
    if not ref.repository:
        raise InvalidReference("cannot tag a reference without a repository")
    if not tag or not TAG_RE.match(tag):
        raise InvalidReference(f"invalid tag format: {tag!r}")
    return replace(ref, tag=tag, digest=None)
