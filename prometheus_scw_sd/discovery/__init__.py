"""Scaleway discovery package: the provider Protocol consumed by the polling loop."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .models import Instance


@runtime_checkable
class InstanceLister(Protocol):
    """Protocol that every provider client must satisfy."""

    def list_instances(self, fetch_all: bool = True) -> list[Instance]:
        """Return every instance known to the provider, or raise ScalewayAPIError."""
        ...
