"""Fold discovered instances into Prometheus target groups."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from .models import ADDRESS_LABEL, GroupLabels, Instance, TargetGroup

DEFAULT_TAG_SEPARATOR = ","


def canonical_tags(tags: Iterable[str], separator: str = DEFAULT_TAG_SEPARATOR) -> str:
    """Render tags as a sorted, separator-delimited string.

    The result is wrapped in the separator on both ends (",a,b,") so that
    relabeling regexes do not have to care about tag positions. No tags
    yields an empty string.
    """
    ordered = sorted(tags)
    if not ordered:
        return ""
    return separator + separator.join(ordered) + separator


def target_address(instance: Instance, port: int, use_private_ip: bool = False) -> str:
    """Return "host:port" for the instance; empty hosts are passed through."""
    host = instance.private_ip if use_private_ip else instance.public_ip
    if ":" in host:
        host = f"[{host}]"
    return f"{host}:{port}"


def instance_labels(instance: Instance, separator: str = DEFAULT_TAG_SEPARATOR) -> GroupLabels:
    return GroupLabels(
        architecture=instance.arch,
        tags=canonical_tags(instance.tags, separator),
        zone_id=instance.zone_id,
    )


def build_target_groups(
    instances: Sequence[Instance],
    port: int,
    use_private_ip: bool = False,
    tag_separator: str = DEFAULT_TAG_SEPARATOR,
) -> list[TargetGroup]:
    """Group instances by (architecture, tags, zone).

    Groups are returned in first-seen order and targets keep input order.
    Each group's source is the name of its first instance.
    """
    groups: dict[GroupLabels, TargetGroup] = {}
    for inst in instances:
        labels = instance_labels(inst, tag_separator)
        target = {ADDRESS_LABEL: target_address(inst, port, use_private_ip)}
        group = groups.get(labels)
        if group is None:
            groups[labels] = TargetGroup(source=inst.name, labels=labels, targets=[target])
        else:
            group.targets.append(target)
    return list(groups.values())
