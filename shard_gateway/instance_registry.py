"""Ordered, read-only view of the backend instances discovered at startup."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Sequence, Tuple

from gateway_shared.routing import select_index

from .errors import DiscoveryError


@dataclass(frozen=True)
class BackendInstance:
    """One independently addressable object-storage node.

    Attributes:
        address: ``host:port`` of the S3 endpoint.
        access_key: Access key for this node.
        secret_key: Secret key for this node.
    """

    address: str
    access_key: str
    secret_key: str

    def __repr__(self) -> str:
        return f"BackendInstance(address={self.address!r})"


class InstanceRegistry:
    """Fixed ordered list of backend instances.

    The instance list is captured once and never changes, so concurrent
    requests read it without locking.
    """

    def __init__(self, instances: Sequence[BackendInstance]):
        """Store the discovered instances.

        Args:
            instances: Non-empty ordered sequence of backends.

        Raises:
            DiscoveryError: If ``instances`` is empty.
        """
        if not instances:
            raise DiscoveryError("no backend instances found")
        self._instances: Tuple[BackendInstance, ...] = tuple(instances)

    def __len__(self) -> int:
        return len(self._instances)

    def __getitem__(self, index: int) -> BackendInstance:
        return self._instances[index]

    def __iter__(self) -> Iterator[BackendInstance]:
        return iter(self._instances)

    @property
    def instances(self) -> Tuple[BackendInstance, ...]:
        return self._instances

    def select(self, identifier: str) -> int:
        """Return the index of the instance that owns ``identifier``."""
        return select_index(identifier, len(self._instances))

    def instance_for(self, identifier: str) -> BackendInstance:
        """Return the instance that owns ``identifier``."""
        return self._instances[self.select(identifier)]
