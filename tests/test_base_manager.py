import pytest
from manager.base_manager import BaseApplicationManager
from manager.categories import (
    ApplicationPerformanceCategory as APC,
    VirtualMachinePerformanceCategory as VPC,
)
from manager.exceptions import ConfigurationError, InvalidArgumentError
from manager.smoothers import DummySmoother


class RecordingManager(BaseApplicationManager):
    def __init__(self):
        super().__init__()
        self.calls = []

    def _do_reset(self):
        self.calls.append("reset")

    def _do_sample(self):
        self.calls.append("sample")

    def _do_control(self):
        self.calls.append("control")


@pytest.mark.parametrize("value", [0, -1.0])
def test_non_positive_intervals_rejected(value):
    mgr = RecordingManager()
    with pytest.raises(InvalidArgumentError):
        mgr.sampling_time = value
    with pytest.raises(InvalidArgumentError):
        mgr.control_time = value


def test_intervals_roundtrip():
    mgr = RecordingManager()
    mgr.sampling_time = 500
    mgr.control_time = 5000
    assert mgr.sampling_time == 500.0
    assert mgr.control_time == 5000.0


def test_reset_without_app():
    mgr = RecordingManager()
    with pytest.raises(ConfigurationError, match="Application is not set"):
        mgr.reset()
    assert mgr.calls == []


def test_targets_sorted_by_category():
    mgr = RecordingManager()
    mgr.set_target_value(APC.THROUGHPUT, 50.0)
    mgr.set_target_value(APC.RESPONSE_TIME, 0.2)
    assert mgr.target_metrics() == [APC.RESPONSE_TIME, APC.THROUGHPUT]
    assert mgr.target_value(APC.THROUGHPUT) == 50.0


def test_missing_lookups_raise():
    mgr = RecordingManager()
    with pytest.raises(InvalidArgumentError):
        mgr.target_value(APC.RESPONSE_TIME)
    with pytest.raises(InvalidArgumentError):
        mgr.data_estimator(APC.RESPONSE_TIME)
    with pytest.raises(InvalidArgumentError):
        mgr.data_smoother(APC.RESPONSE_TIME)
    with pytest.raises(InvalidArgumentError):
        mgr.vm_data_smoother(VPC.CPU_UTIL, "vm1")


def test_none_estimator_rejected():
    mgr = RecordingManager()
    with pytest.raises(InvalidArgumentError):
        mgr.set_data_estimator(APC.RESPONSE_TIME, None)
    with pytest.raises(InvalidArgumentError):
        mgr.set_vm_data_smoother(VPC.CPU_UTIL, "vm1", None)


def test_vm_smoother_registry():
    mgr = RecordingManager()
    sm = DummySmoother()
    mgr.set_vm_data_smoother(VPC.MEMORY_UTIL, "vm1", sm)
    assert mgr.vm_data_smoother(VPC.MEMORY_UTIL, "vm1") is sm
    assert not hasattr(mgr, "vm_data_estimator")
    mgr.clear_vm_data()
    with pytest.raises(InvalidArgumentError):
        mgr.vm_data_smoother(VPC.MEMORY_UTIL, "vm1")


def test_handlers_run_after_step_in_registration_order(two_vm_app):
    mgr = RecordingManager()
    mgr.app = two_vm_app
    mgr.add_on_reset_handler(lambda m: m.calls.append("on_reset"))
    mgr.add_on_control_handler(lambda m: m.calls.append("on_control_1"))
    mgr.add_on_control_handler(lambda m: m.calls.append("on_control_2"))
    mgr.add_on_sample_handler(lambda m: m.calls.append("on_sample"))

    mgr.reset()
    mgr.sample()
    mgr.control()

    assert mgr.calls == [
        "reset", "on_reset",
        "sample", "on_sample",
        "control", "on_control_1", "on_control_2",
    ]


def test_handler_receives_manager(two_vm_app):
    mgr = RecordingManager()
    mgr.app = two_vm_app
    seen = []
    mgr.add_on_sample_handler(seen.append)
    mgr.sample()
    assert seen == [mgr]
