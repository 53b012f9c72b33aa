"""
Artifact records produced by Harbor discovery and consumed by ECR migration.

An ArtifactRecord is built once from one Harbor API artifact item and is
immutable afterwards. The same record is serialized to one NDJSON line and to
one CSV row; the CSV joins ``tags`` and ``platforms`` with ``|``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

LIST_SEPARATOR = "|"
UNKNOWN_PLATFORM_FIELD = "unknown"

CSV_COLUMNS = [
    "project",
    "repository",
    "digest",
    "push_time",
    "manifest_media_type",
    "tags",
    "platforms",
    "size",
]

INDEX_MEDIA_TYPES = {
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
}


def _require_text(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"ArtifactRecord.{name} must be a non-empty string, got: {value!r}")
    return value


def _split_joined(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return value.split(LIST_SEPARATOR)


def strip_project_prefix(project: str, repository: str) -> str:
    """Return the repository name without its leading "<project>/" segment.

    Harbor lists repositories as "<project>/<name>"; nested names keep every
    segment after the project.
    """
    prefix = f"{project}/"
    if repository.startswith(prefix):
        return repository[len(prefix):]
    return repository


def extract_platforms(references: Optional[Iterable[Dict[str, Any]]]) -> Tuple[str, ...]:
    """Build the sorted, de-duplicated "<os>/<architecture>" set of an index.

    References without a platform object (attestations, plain manifests) are
    ignored. A missing os or architecture becomes "unknown".
    """
    platforms = set()
    for reference in references or []:
        if not isinstance(reference, dict):
            continue
        platform = reference.get("platform")
        if not isinstance(platform, dict):
            continue
        os_name = platform.get("os") or UNKNOWN_PLATFORM_FIELD
        architecture = platform.get("architecture") or UNKNOWN_PLATFORM_FIELD
        platforms.add(f"{os_name}/{architecture}")
    return tuple(sorted(platforms))


@dataclass(frozen=True)
class ArtifactRecord:
    """One pushed image or image index, identified by (project, repository, digest)."""

    project: str
    repository: str
    digest: str
    push_time: str = ""
    manifest_media_type: str = ""
    tags: Tuple[str, ...] = field(default_factory=tuple)
    platforms: Tuple[str, ...] = field(default_factory=tuple)
    size: int = 0
    pull_time: str = ""
    type: str = ""

    def __post_init__(self):
        _require_text("project", self.project)
        _require_text("repository", self.repository)
        _require_text("digest", self.digest)

        tags = tuple(self.tags or ())
        for tag in tags:
            if not isinstance(tag, str) or not tag:
                raise ValueError(f"ArtifactRecord tags must be non-empty strings, got: {tag!r}")

        # Set semantics; first occurrence wins so registry order is kept
        platforms = tuple(dict.fromkeys(self.platforms or ()))

        try:
            size = int(self.size or 0)
        except (TypeError, ValueError):
            raise ValueError(f"ArtifactRecord.size must be an integer, got: {self.size!r}")

        object.__setattr__(self, "tags", tags)
        object.__setattr__(self, "platforms", platforms)
        object.__setattr__(self, "size", size)
        object.__setattr__(self, "push_time", self.push_time or "")
        object.__setattr__(self, "manifest_media_type", self.manifest_media_type or "")
        object.__setattr__(self, "pull_time", self.pull_time or "")
        object.__setattr__(self, "type", self.type or "")

    @property
    def is_multi_arch(self) -> bool:
        return self.manifest_media_type in INDEX_MEDIA_TYPES or bool(self.platforms)

    @property
    def source_path(self) -> str:
        """"<project>/<repository>@<digest>", the registry-relative pull reference."""
        return f"{self.project}/{self.repository}@{self.digest}"

    @classmethod
    def from_api_item(cls, project: str, repository: str, item: Dict[str, Any]) -> "ArtifactRecord":
        """Normalize one item of Harbor's artifacts listing.

        Args:
            project: Harbor project the repository belongs to
            repository: Repository name, with or without the "<project>/" prefix
            item: Artifact JSON object as returned with with_tag=true
        """
        if not isinstance(item, dict):
            raise ValueError(f"Artifact item must be an object, got: {type(item).__name__}")

        tags = [tag.get("name") for tag in (item.get("tags") or []) if isinstance(tag, dict)]
        return cls(
            project=project,
            repository=strip_project_prefix(project, repository),
            digest=item.get("digest") or "",
            push_time=item.get("push_time") or "",
            manifest_media_type=item.get("manifest_media_type") or "",
            tags=tuple(tags),
            platforms=extract_platforms(item.get("references")),
            size=item.get("size") or 0,
            pull_time=item.get("pull_time") or "",
            type=item.get("type") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project": self.project,
            "repository": self.repository,
            "digest": self.digest,
            "push_time": self.push_time,
            "pull_time": self.pull_time,
            "size": self.size,
            "type": self.type,
            "manifest_media_type": self.manifest_media_type,
            "tags": list(self.tags),
            "platforms": list(self.platforms),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArtifactRecord":
        return cls(
            project=data.get("project") or "",
            repository=data.get("repository") or "",
            digest=data.get("digest") or "",
            push_time=data.get("push_time") or "",
            manifest_media_type=data.get("manifest_media_type") or "",
            tags=tuple(data.get("tags") or ()),
            platforms=tuple(data.get("platforms") or ()),
            size=data.get("size") or 0,
            pull_time=data.get("pull_time") or "",
            type=data.get("type") or "",
        )

    def to_csv_row(self) -> List[str]:
        """Row values in CSV_COLUMNS order."""
        return [
            self.project,
            self.repository,
            self.digest,
            self.push_time,
            self.manifest_media_type,
            LIST_SEPARATOR.join(self.tags),
            LIST_SEPARATOR.join(self.platforms),
            str(self.size),
        ]

    @classmethod
    def from_csv_row(cls, row: Dict[str, str]) -> "ArtifactRecord":
        """Rebuild a record from a csv.DictReader row. The size column is optional."""
        return cls(
            project=row.get("project") or "",
            repository=row.get("repository") or "",
            digest=row.get("digest") or "",
            push_time=row.get("push_time") or "",
            manifest_media_type=row.get("manifest_media_type") or "",
            tags=tuple(_split_joined(row.get("tags"))),
            platforms=tuple(_split_joined(row.get("platforms"))),
            size=row.get("size") or 0,
        )


@dataclass(frozen=True)
class MigrationTask:
    """One (artifact, tag) copy from Harbor to ECR. Never persisted."""

    source: str
    destination: str
    tag: str
    record: ArtifactRecord

    @classmethod
    def for_tag(cls, record: ArtifactRecord, tag: str, harbor_host: str, ecr_registry: str) -> "MigrationTask":
        return cls(
            source=f"{harbor_host.rstrip('/')}/{record.source_path}",
            destination=f"{ecr_registry.rstrip('/')}/{record.repository}:{tag}",
            tag=tag,
            record=record,
        )
