import pytest

from manager.categories import (
    ApplicationPerformanceCategory,
    VirtualMachinePerformanceCategory,
)


class FakeSensor:
    """
    Sensor stand-in driven by the test.

    Values queued with push() become visible after the next sense(), like a
    sensor that pulls a batch of observations from its source.
    """

    def __init__(self):
        self.pending = []
        self.ready = []
        self.sense_calls = 0
        self.fail_with = None

    def push(self, *values):
        self.pending.extend(float(v) for v in values)

    def sense(self):
        self.sense_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.ready.extend(self.pending)
        self.pending = []

    def has_observations(self):
        return bool(self.ready)

    def observations(self):
        obs, self.ready = self.ready, []
        return obs


class FakeVM:
    def __init__(self, vm_id, cpu_share=0.5, memory_share=0.5, vcpus=1):
        self._id = vm_id
        self.cpu = cpu_share
        self.mem = memory_share
        self.vcpus = vcpus
        self.set_calls = []
        self.sensors = {cat: FakeSensor() for cat in VirtualMachinePerformanceCategory}

    def id(self):
        return self._id

    def cpu_share(self):
        return self.cpu

    def set_cpu_share(self, share):
        self.set_calls.append(("cpu", share))
        self.cpu = share

    def memory_share(self):
        return self.mem

    def set_memory_share(self, share):
        self.set_calls.append(("mem", share))
        self.mem = share

    def cpu_cap(self):
        return float(int(self.cpu * self.vcpus * 100)) if self.cpu < 1.0 else 0.0

    def sensor(self, category):
        return self.sensors[category]

    # helpers
    def push_cpu(self, *values):
        self.sensors[VirtualMachinePerformanceCategory.CPU_UTIL].push(*values)

    def push_mem(self, *values):
        self.sensors[VirtualMachinePerformanceCategory.MEMORY_UTIL].push(*values)


class FakeApp:
    def __init__(self, vms):
        self._vms = list(vms)
        self.sensors = {cat: FakeSensor() for cat in ApplicationPerformanceCategory}

    def vms(self):
        return list(self._vms)

    def num_vms(self):
        return len(self._vms)

    def sensor(self, category):
        return self.sensors[category]

    def push_rt(self, *values):
        self.sensors[ApplicationPerformanceCategory.RESPONSE_TIME].push(*values)


@pytest.fixture
def two_vm_app():
    return FakeApp([FakeVM("vm1"), FakeVM("vm2")])
