# tests/test_fc2q_manager.py

import logging
import math

import pytest
from manager.categories import (
    ApplicationPerformanceCategory as APC,
    VirtualMachinePerformanceCategory as VPC,
)
from manager.estimators import MeanEstimator
from manager.exceptions import ConfigurationError, InvalidArgumentError
from manager.fc2q_manager import ControlOutcome, FC2QApplicationManager, essentially_equal


def make_manager(app, target=1.0, **kwargs):
    mgr = FC2QApplicationManager(**kwargs)
    mgr.sampling_time = 1000
    mgr.control_time = 10000
    mgr.app = app
    mgr.set_target_value(APC.RESPONSE_TIME, target)
    mgr.set_data_estimator(APC.RESPONSE_TIME, MeanEstimator())
    mgr.reset()
    return mgr


def feed(app, cpu=0.25, mem=0.25, rt=0.8):
    for vm in app.vms():
        if cpu is not None:
            vm.push_cpu(cpu)
        if mem is not None:
            vm.push_mem(mem)
    if rt is not None:
        app.push_rt(rt)


def assert_counters_consistent(mgr):
    assert mgr.ctl_count == mgr.ctl_skip_count + mgr.ctl_fail_count + mgr.ctl_applied_count


# ------------------------------------------------------------
# Configuration
# ------------------------------------------------------------

@pytest.mark.parametrize("beta", [0.0, -0.5, 1.5])
def test_invalid_smoothing_factor(beta):
    with pytest.raises(InvalidArgumentError):
        FC2QApplicationManager(smoothing_factor=beta)


def test_reset_requires_estimator_for_target(two_vm_app):
    mgr = FC2QApplicationManager()
    mgr.app = two_vm_app
    mgr.set_target_value(APC.RESPONSE_TIME, 0.5)
    with pytest.raises(ConfigurationError):
        mgr.reset()


def test_reset_requires_positive_target(two_vm_app):
    with pytest.raises(ConfigurationError):
        make_manager(two_vm_app, target=0.0)


def test_compute_error_sign():
    # positive means better than target
    assert FC2QApplicationManager.compute_error(APC.RESPONSE_TIME, 0.8, 1.0) == pytest.approx(0.2)
    assert FC2QApplicationManager.compute_error(APC.THROUGHPUT, 120.0, 100.0) == pytest.approx(0.2)
    assert FC2QApplicationManager.compute_error(APC.RESPONSE_TIME, 1.5, 1.0) == pytest.approx(-0.5)


def test_essentially_equal():
    assert essentially_equal(0.5, 0.5)
    assert essentially_equal(0.1 + 0.2, 0.3)
    assert not essentially_equal(0.5, 0.5001)


# ------------------------------------------------------------
# Control outcomes
# ------------------------------------------------------------

def test_applied_control_near_target(two_vm_app):
    mgr = make_manager(two_vm_app)
    feed(two_vm_app)
    mgr.sample()
    mgr.control()

    assert mgr.last_outcome is ControlOutcome.APPLIED
    assert (mgr.ctl_count, mgr.ctl_applied_count) == (1, 1)
    assert mgr.last_residuals(VPC.CPU_UTIL) == [pytest.approx(0.25), pytest.approx(0.25)]
    assert mgr.last_error(APC.RESPONSE_TIME) == pytest.approx(0.2)
    for vm in two_vm_app.vms():
        assert abs(vm.cpu_share() - 0.5) < 0.05
        assert abs(vm.memory_share() - 0.5) < 0.05


def test_scale_up_is_clamped_to_one(two_vm_app):
    mgr = make_manager(two_vm_app)
    # saturated VMs (residual 0) and a late application (E = -0.4)
    feed(two_vm_app, cpu=0.5, mem=0.5, rt=1.4)
    mgr.sample()
    mgr.control()

    assert mgr.last_outcome is ControlOutcome.APPLIED
    assert mgr.last_deltas(VPC.CPU_UTIL)[0] > 0.4
    for vm in two_vm_app.vms():
        assert vm.cpu_share() == 1.0
        assert vm.memory_share() == 1.0


def test_clamping_both_bounds(two_vm_app, monkeypatch):
    vm1, vm2 = two_vm_app.vms()
    vm1.cpu, vm1.mem = 0.5, 0.2
    mgr = make_manager(two_vm_app)
    monkeypatch.setattr(
        mgr,
        "_compute_deltas",
        lambda vms, residuals, err: {VPC.CPU_UTIL: [0.7, 0.0], VPC.MEMORY_UTIL: [-0.5, 0.0]},
    )
    feed(two_vm_app)
    mgr.sample()
    mgr.control()

    assert vm1.cpu_share() == 1.0
    assert vm1.memory_share() == 0.0
    # zero deltas do not touch the VM
    assert vm2.set_calls == []


def test_skip_without_application_data(two_vm_app):
    mgr = make_manager(two_vm_app)
    feed(two_vm_app, rt=None)
    mgr.sample()
    mgr.control()

    assert mgr.last_outcome is ControlOutcome.SKIPPED
    assert (mgr.ctl_count, mgr.ctl_skip_count, mgr.ctl_applied_count) == (1, 1, 0)
    assert all(vm.set_calls == [] for vm in two_vm_app.vms())


def test_skip_when_one_vm_has_no_observation(two_vm_app):
    mgr = make_manager(two_vm_app)
    vm1, _ = two_vm_app.vms()
    vm1.push_cpu(0.25)
    vm1.push_mem(0.25)
    two_vm_app.push_rt(0.8)
    mgr.sample()
    mgr.control()
    assert mgr.last_outcome is ControlOutcome.SKIPPED


def test_vm_observations_are_counted_per_interval(two_vm_app):
    mgr = make_manager(two_vm_app)
    feed(two_vm_app)
    mgr.sample()
    mgr.control()
    assert mgr.last_outcome is ControlOutcome.APPLIED

    # Smoothers still hold a level, but nothing arrived in this interval
    two_vm_app.push_rt(0.8)
    mgr.sample()
    mgr.control()
    assert mgr.last_outcome is ControlOutcome.SKIPPED


def test_skip_when_application_data_stops(two_vm_app):
    mgr = make_manager(two_vm_app)
    feed(two_vm_app)
    mgr.sample(); mgr.control()
    assert mgr.last_outcome is ControlOutcome.APPLIED
    for vm in two_vm_app.vms():
        vm.set_calls.clear()

    # Fresh VM data, but the application sensor stays silent
    feed(two_vm_app, rt=None)
    mgr.sample(); mgr.control()

    assert mgr.last_outcome is ControlOutcome.SKIPPED
    assert mgr.data_estimator(APC.RESPONSE_TIME).count() == 1
    assert all(vm.set_calls == [] for vm in two_vm_app.vms())
    assert_counters_consistent(mgr)


def test_sensor_failure_counts_as_missing_data(two_vm_app, caplog):
    mgr = make_manager(two_vm_app)
    vm1, _ = two_vm_app.vms()
    vm1.sensor(VPC.CPU_UTIL).fail_with = RuntimeError("sensor offline")
    feed(two_vm_app)
    with caplog.at_level(logging.WARNING, logger="fc2q"):
        mgr.sample()
    mgr.control()

    assert "sensor offline" in caplog.text
    assert mgr.last_outcome is ControlOutcome.SKIPPED


def test_fail_on_non_finite_engine_output(two_vm_app, monkeypatch, caplog):
    mgr = make_manager(two_vm_app)
    monkeypatch.setattr(mgr.engine, "output_value", lambda name: math.nan)
    feed(two_vm_app)
    mgr.sample()
    with caplog.at_level(logging.WARNING, logger="fc2q"):
        mgr.control()

    assert mgr.last_outcome is ControlOutcome.FAILED
    assert (mgr.ctl_count, mgr.ctl_fail_count, mgr.ctl_applied_count) == (1, 1, 0)
    assert "Control not applied" in caplog.text
    assert all(vm.set_calls == [] for vm in two_vm_app.vms())
    assert mgr.last_deltas(VPC.CPU_UTIL) == []


def test_failure_on_second_vm_leaves_first_untouched(two_vm_app, monkeypatch):
    mgr = make_manager(two_vm_app)
    real_output = mgr.engine.output_value
    calls = {"n": 0}

    def flaky_output(name):
        calls["n"] += 1
        # outputs 1-2 belong to vm1, 3-4 to vm2
        return math.nan if calls["n"] > 2 else real_output(name)

    monkeypatch.setattr(mgr.engine, "output_value", flaky_output)
    feed(two_vm_app, cpu=0.5, mem=0.5, rt=1.4)
    mgr.sample()
    mgr.control()

    assert mgr.last_outcome is ControlOutcome.FAILED
    assert all(vm.set_calls == [] for vm in two_vm_app.vms())


def test_actuation_error_is_logged(two_vm_app, caplog):
    mgr = make_manager(two_vm_app)
    vm1, vm2 = two_vm_app.vms()

    def refuse(share):
        raise RuntimeError("hypervisor refused")

    vm1.set_cpu_share = refuse
    feed(two_vm_app, cpu=0.5, mem=0.5, rt=1.4)
    mgr.sample()
    with caplog.at_level(logging.ERROR, logger="fc2q"):
        mgr.control()

    assert "hypervisor refused" in caplog.text
    assert mgr.last_outcome is ControlOutcome.APPLIED
    assert vm2.cpu_share() == 1.0


def test_counter_invariant_over_mixed_cycles(two_vm_app, monkeypatch):
    mgr = make_manager(two_vm_app)
    assert_counters_consistent(mgr)

    feed(two_vm_app)                      # applied
    mgr.sample(); mgr.control()
    assert_counters_consistent(mgr)

    mgr.sample(); mgr.control()           # skipped
    assert_counters_consistent(mgr)

    monkeypatch.setattr(mgr.engine, "output_value", lambda name: math.nan)
    feed(two_vm_app)                      # failed
    mgr.sample(); mgr.control()
    assert_counters_consistent(mgr)

    assert (mgr.ctl_count, mgr.ctl_applied_count, mgr.ctl_skip_count, mgr.ctl_fail_count) == (3, 1, 1, 1)


# ------------------------------------------------------------
# Reset and estimation
# ------------------------------------------------------------

def test_reset_clears_state(two_vm_app):
    mgr = make_manager(two_vm_app)
    feed(two_vm_app)
    mgr.sample(); mgr.control()
    mgr.sample(); mgr.control()
    assert mgr.ctl_count == 2

    mgr.reset()
    assert (mgr.ctl_count, mgr.ctl_skip_count, mgr.ctl_fail_count, mgr.ctl_applied_count) == (0, 0, 0, 0)
    assert mgr.last_outcome is None
    assert mgr.data_estimator(APC.RESPONSE_TIME).count() == 0
    for vm in two_vm_app.vms():
        for cat in VPC:
            assert mgr.vm_data_smoother(cat, vm.id()).count() == 0
            assert math.isnan(mgr.vm_data_smoother(cat, vm.id()).forecast(0))


def test_smoothers_use_manager_beta(two_vm_app):
    mgr = make_manager(two_vm_app, smoothing_factor=0.5)
    vm1, _ = two_vm_app.vms()
    vm1.push_cpu(0.2, 0.4)
    mgr.sample()
    assert mgr.vm_data_smoother(VPC.CPU_UTIL, "vm1").forecast(0) == pytest.approx(0.3)


@pytest.mark.parametrize(
    "kind, expected",
    [("brown_ses", 0.5 - 0.3), ("dummy", 0.5 - 0.4), ("holt_winters_des", 0.5 - 0.4)],
)
def test_vm_smoother_kind_drives_residuals(two_vm_app, kind, expected):
    params = {"alpha": 1.0, "beta": 0.5} if kind == "holt_winters_des" else None
    mgr = make_manager(two_vm_app, smoothing_factor=0.5, vm_smoother=kind, vm_smoother_params=params)
    for vm in two_vm_app.vms():
        vm.push_cpu(0.2, 0.4)
    feed(two_vm_app, cpu=None)
    mgr.sample(); mgr.control()
    assert mgr.last_residuals(VPC.CPU_UTIL) == [pytest.approx(expected)] * 2


def test_unknown_vm_smoother_kind():
    with pytest.raises(ConfigurationError):
        FC2QApplicationManager(vm_smoother="kalman")


def test_estimator_accumulates_across_intervals(two_vm_app):
    mgr = make_manager(two_vm_app)
    feed(two_vm_app, rt=0.6)
    mgr.sample(); mgr.control()
    feed(two_vm_app, rt=1.0)
    mgr.sample(); mgr.control()
    assert mgr.data_estimator(APC.RESPONSE_TIME).count() == 2
    assert mgr.last_error(APC.RESPONSE_TIME) == pytest.approx(0.2)


def test_reset_estimation_every_interval(two_vm_app):
    mgr = make_manager(two_vm_app, reset_estimation_every_interval=True)
    feed(two_vm_app)
    mgr.sample(); mgr.control()
    assert mgr.data_estimator(APC.RESPONSE_TIME).count() == 0

    # VM data but no fresh application data -> skip
    feed(two_vm_app, rt=None)
    mgr.sample(); mgr.control()
    assert mgr.last_outcome is ControlOutcome.SKIPPED


# ------------------------------------------------------------
# Data file
# ------------------------------------------------------------

def test_data_file_header_and_rows(two_vm_app, tmp_path):
    path = tmp_path / "fc2q.dat"
    mgr = make_manager(two_vm_app, data_file=str(path))
    mgr.sample(); mgr.control()            # skipped, no data at all
    feed(two_vm_app)
    mgr.sample(); mgr.control()            # applied
    mgr.close()

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == (
        '"ts","Cap_{vm1}","Share_{vm1}","Cap_{vm2}","Share_{vm2}",'
        '"r_{0}","y_{0}","E_{0}","Cres_{vm1}","Cres_{vm2}",'
        '"# Controls","# Skip Controls","# Fail Controls"'
    )
    assert len(lines) == 3

    skipped = lines[1].split(",")
    assert len(skipped) == 13
    assert int(skipped[0]) > 0
    assert skipped[1:5] == ["50", "0.5", "50", "0.5"]
    assert skipped[5:8] == ["1", "nan", "nan"]
    assert skipped[8:10] == ["nan", "nan"]
    assert skipped[10:] == ["1", "1", "0"]

    applied = lines[2].split(",")
    assert float(applied[6]) == pytest.approx(0.8)
    assert float(applied[7]) == pytest.approx(0.2)
    assert float(applied[8]) == pytest.approx(0.25)
    assert applied[10:] == ["2", "1", "0"]


def test_data_file_disabled(two_vm_app, tmp_path):
    mgr = make_manager(two_vm_app)
    mgr.export_data_to("")
    assert mgr.data_file is None
    mgr.reset()
    feed(two_vm_app)
    mgr.sample(); mgr.control()
    assert list(tmp_path.iterdir()) == []


def test_unopenable_data_file(two_vm_app, tmp_path):
    with pytest.raises(ConfigurationError):
        make_manager(two_vm_app, data_file=str(tmp_path / "missing" / "fc2q.dat"))
