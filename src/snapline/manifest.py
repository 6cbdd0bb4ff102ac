"""Version manifest: the declarative, ordered list of known releases.

The manifest is a JSON document::

    {"versions": [{"version": "1.0.0", "manifest": "8648157485416231210"}, ...]}

Declared order is the processing order. It is not assumed to match semver
order, since an older release may be appended after newer ones.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence, Tuple, Union

import semver
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ManifestError


MANIFEST_FILENAME = "versions.json"


def parse_version(value: Union[str, semver.Version]) -> semver.Version:
    """Parse a strict semantic version string.

    Raises:
        ValueError: If ``value`` is not valid semver
    """
    if isinstance(value, semver.Version):
        return value
    return semver.Version.parse(str(value).strip())


class VersionDescriptor(BaseModel):
    """One release: its semantic version and the fetch collaborator's reference."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, populate_by_name=True)

    version: semver.Version
    manifest_ref: str = Field(
        validation_alias=AliasChoices("manifest", "manifest_ref", "manifestRef"),
        min_length=1,
    )

    @field_validator("version", mode="before")
    @classmethod
    def _parse_version(cls, v: Any) -> semver.Version:
        try:
            return parse_version(v)
        except (TypeError, ValueError) as e:
            raise ValueError(f"invalid semantic version {v!r}: {e}") from e

    @field_validator("manifest_ref", mode="before")
    @classmethod
    def _coerce_ref(cls, v: Any) -> str:
        # Manifest ids are large integers and are sometimes written unquoted
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    def __str__(self) -> str:
        return str(self.version)


class VersionManifest:
    """Ordered, read-only sequence of :class:`VersionDescriptor`."""

    def __init__(self, descriptors: Sequence[VersionDescriptor]):
        seen: dict[semver.Version, int] = {}
        for position, descriptor in enumerate(descriptors):
            if descriptor.version in seen:
                raise ManifestError(
                    f"Duplicate version {descriptor.version} at positions "
                    f"{seen[descriptor.version]} and {position}"
                )
            seen[descriptor.version] = position
        self._descriptors: Tuple[VersionDescriptor, ...] = tuple(descriptors)
        self._positions = seen

    def __iter__(self) -> Iterator[VersionDescriptor]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    def __getitem__(self, index: int) -> VersionDescriptor:
        return self._descriptors[index]

    def __contains__(self, version: object) -> bool:
        try:
            return parse_version(version) in self._positions  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return False

    @property
    def versions(self) -> List[semver.Version]:
        return [d.version for d in self._descriptors]

    def index_of(self, version: Union[str, semver.Version]) -> int:
        parsed = parse_version(version)
        try:
            return self._positions[parsed]
        except KeyError:
            raise ManifestError(f"Version {parsed} is not in the manifest") from None

    def get(self, version: Union[str, semver.Version]) -> VersionDescriptor:
        return self._descriptors[self.index_of(version)]

    def predecessor_of(self, version: Union[str, semver.Version]) -> Optional[VersionDescriptor]:
        """Return the descriptor declared immediately before ``version``, if any."""
        position = self.index_of(version)
        if position == 0:
            return None
        return self._descriptors[position - 1]

    def tail_after(self, version: Union[str, semver.Version]) -> List[VersionDescriptor]:
        """Descriptors declared after ``version`` whose version is strictly greater."""
        pivot = parse_version(version)
        position = self.index_of(pivot)
        return [d for d in self._descriptors[position + 1:] if d.version > pivot]

    def is_sorted(self) -> bool:
        versions = self.versions
        return all(a < b for a, b in zip(versions, versions[1:]))


def parse_manifest(data: Union[str, bytes, dict, list]) -> VersionManifest:
    """Build a manifest from JSON text or already-decoded data.

    Accepts either ``{"versions": [...]}`` or a bare list of entries.

    Raises:
        ManifestError: If the document cannot be decoded or validated
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ManifestError(f"Invalid manifest JSON: {e}") from e

    if isinstance(data, dict):
        if "versions" not in data:
            raise ManifestError("Manifest object has no 'versions' key")
        entries = data["versions"]
    else:
        entries = data

    if not isinstance(entries, list):
        raise ManifestError("Manifest 'versions' must be a list")

    descriptors = []
    for position, entry in enumerate(entries):
        try:
            descriptors.append(VersionDescriptor.model_validate(entry))
        except ValidationError as e:
            raise ManifestError(f"Invalid manifest entry at position {position}:\n{e}") from e
    return VersionManifest(descriptors)


def load_manifest(path: Path) -> VersionManifest:
    """Load a manifest file from disk.

    Raises:
        ManifestError: If the file is missing or invalid
    """
    try:
        raw = Path(path).read_bytes()
    except FileNotFoundError:
        raise ManifestError(f"Manifest file not found: {path}") from None
    except OSError as e:
        raise ManifestError(f"Cannot read manifest {path}: {e}") from e
    return parse_manifest(raw)
