"""Data models for discovered Scaleway instances and Prometheus target groups."""

from __future__ import annotations

from dataclasses import dataclass, field

META_LABEL_PREFIX = "__meta_"
ADDRESS_LABEL = "__address__"

SCW_PREFIX = META_LABEL_PREFIX + "scw_"
# Label names are matched verbatim by relabeling rules; do not rename.
ARCH_LABEL = SCW_PREFIX + "architecture"
TAGS_LABEL = SCW_PREFIX + "tags"
ZONE_LABEL = SCW_PREFIX + "zone_id"


@dataclass(frozen=True)
class Instance:
    """A single server discovered from the Scaleway Instance API."""

    name: str
    public_ip: str
    private_ip: str
    arch: str
    zone_id: str
    tags: tuple[str, ...] = ()
    id: str = ""


@dataclass(frozen=True)
class GroupLabels:
    """The label set shared by every target of one group.

    Equality is field-by-field, so two instances group together only when
    architecture, canonical tag string and zone all match verbatim.
    """

    architecture: str
    tags: str
    zone_id: str

    def as_dict(self) -> dict[str, str]:
        return {
            ARCH_LABEL: self.architecture,
            TAGS_LABEL: self.tags,
            ZONE_LABEL: self.zone_id,
        }


@dataclass
class TargetGroup:
    """Instances sharing one label set, the unit written to the file_sd file."""

    source: str
    labels: GroupLabels
    targets: list[dict[str, str]] = field(default_factory=list)

    @property
    def addresses(self) -> list[str]:
        return [t[ADDRESS_LABEL] for t in self.targets]

    def to_file_sd(self) -> dict:
        """Render as a Prometheus file_sd entry: {"targets": [...], "labels": {...}}."""
        return {"targets": self.addresses, "labels": self.labels.as_dict()}
