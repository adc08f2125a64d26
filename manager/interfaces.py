"""
Collaborator interfaces consumed by the application managers.

The managers never own applications, VMs or sensors: they are borrowed
handles supplied at configuration time. Any object providing these methods
can be managed (a hypervisor-backed VM, the simulated testbed, a test fake).
"""

from typing import List, Protocol, Sequence

from manager.categories import (
    ApplicationPerformanceCategory,
    VirtualMachinePerformanceCategory,
)


class Sensor(Protocol):
    def sense(self) -> None:
        """Pulls fresh data from the source. May block on I/O."""

    def has_observations(self) -> bool:
        ...

    def observations(self) -> Sequence[float]:
        """Observed values in arrival order; consumed by this call."""


class VirtualMachine(Protocol):
    def id(self) -> str:
        ...

    def cpu_share(self) -> float:
        ...

    def set_cpu_share(self, share: float) -> None:
        ...

    def memory_share(self) -> float:
        ...

    def set_memory_share(self, share: float) -> None:
        ...

    def cpu_cap(self) -> float:
        """Hypervisor CPU cap (percent of all vCPUs, 0 means uncapped)."""

    def sensor(self, category: VirtualMachinePerformanceCategory) -> Sensor:
        ...


class Application(Protocol):
    def vms(self) -> List[VirtualMachine]:
        ...

    def num_vms(self) -> int:
        ...

    def sensor(self, category: ApplicationPerformanceCategory) -> Sensor:
        ...
