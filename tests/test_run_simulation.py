# tests/test_run_simulation.py

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest
from manager.categories import ApplicationPerformanceCategory as APC
from simulation.central_config import ManagerConfig, build_manager
from simulation.perturbations import Perturbation
from simulation.plot_sim_results import (
    compute_metrics,
    mean_absolute_error,
    plot_sim_results,
    share_statistics,
    sla_violation_ratio,
)
from simulation.run_simulation import run_managed_simulation
from simulation.testbed_simulator import ApplicationParams, SimConfig, TierParams
from simulation.testbed_simulator import TestbedSimulator as Simulator
from utils.profiler import CodeProfiler


def make_setup(data_file=None):
    tiers = [TierParams("app", cpu_demand=0.01, cpu_share=0.65)]
    cfg = SimConfig(
        dt=1.0,
        cpu_noise_std=0.0,
        mem_noise_std=0.0,
        rt_noise_std=0.0,
        seed=1,
        perturb=Perturbation(base_rate=60.0),
    )
    sim = Simulator(ApplicationParams(), tiers, cfg)
    mgr_cfg = ManagerConfig(
        sampling_time_ms=1000.0,
        control_time_ms=10000.0,
        data_file=data_file,
        targets={APC.RESPONSE_TIME: 0.05},
    )
    return sim, build_manager(mgr_cfg, sim.app)


def test_controls_follow_control_interval():
    sim, manager = make_setup()
    trace = run_managed_simulation(sim, manager, 30.0)

    assert trace.t == [pytest.approx(10.0), pytest.approx(20.0), pytest.approx(30.0)]
    assert manager.ctl_count == 3
    assert trace.counts[-1] == (3, manager.ctl_skip_count, manager.ctl_fail_count)
    assert len(sim.log_t) == 30


def test_slow_application_gets_more_cpu():
    sim, manager = make_setup()
    trace = run_managed_simulation(sim, manager, 10.0)

    # RT far above target on a nearly saturated VM: first decision scales up
    assert trace.outcome == ["applied"]
    assert trace.error[0][int(APC.RESPONSE_TIME)] < -0.4
    assert trace.cpu_share[0][0] > 0.65


def test_run_writes_data_file(tmp_path):
    path = tmp_path / "run.dat"
    sim, manager = make_setup(data_file=str(path))
    run_managed_simulation(sim, manager, 20.0)
    manager.close()
    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 3
    assert lines[0].startswith('"ts","Cap_{app}","Share_{app}"')


def test_metric_functions():
    rt = np.array([0.02, 0.04, 0.06, 0.08])
    assert sla_violation_ratio(rt, 0.05) == pytest.approx(0.5)
    assert sla_violation_ratio([90.0, 110.0], 100.0, higher_is_better=True) == pytest.approx(0.5)
    assert mean_absolute_error(rt, 0.05) == pytest.approx(0.02 / 0.05)
    stats = share_statistics([[0.2, 1.0], [0.4, 1.0]])
    assert stats["mean"].tolist() == pytest.approx([0.3, 1.0])
    assert stats["max"].tolist() == pytest.approx([0.4, 1.0])
    assert np.isnan(sla_violation_ratio([], 1.0))


def test_plot_and_metrics_after_run(tmp_path):
    sim, manager = make_setup()
    trace = run_managed_simulation(sim, manager, 30.0)
    out = tmp_path / "run.png"
    fig = plot_sim_results(sim, trace, manager, save_path=str(out), show=False)
    assert out.exists()
    assert fig is not None
    metrics = compute_metrics(sim, {APC.RESPONSE_TIME: 0.05})
    assert 0.0 <= metrics["rt_sla_violation"] <= 1.0
    assert "cpu_share_mean[app]" in metrics


def test_profiler_records_elapsed():
    with CodeProfiler("noop", budget_ms=1000.0) as prof:
        sum(range(100))
    assert prof.elapsed_ms >= 0.0
