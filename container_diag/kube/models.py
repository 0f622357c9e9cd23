"""Identifiers for the containers being inspected."""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class ContainerTarget:
    """One container in one pod, supplied by workload discovery."""

    namespace: str
    pod: str
    container: str

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.namespace, self.pod, self.container)

    def __str__(self) -> str:
        return f"{self.namespace}/{self.pod}/{self.container}"
