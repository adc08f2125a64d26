# plot_sim_results.py
"""
plot_sim_results.py
====================

Analysis & Plotting utilities for managed testbed runs.

This module visualizes the logs produced by TestbedSimulator together with
the per-control trace recorded by the runner. `plot_sim_results()` accepts
a completed simulation and generates a stacked Matplotlib figure showing:

    • Arrival rate vs time
    • Response time vs time, with the target as a dashed line
    • CPU share and CPU utilization of every VM
    • Memory share and memory utilization of every VM
    • Control outcomes (applied / skipped / failed) as markers

Typical usage::

    from simulation.plot_sim_results import plot_sim_results

    trace = run_managed_simulation(sim, manager, 600.0)
    plot_sim_results(sim, trace, manager, save_path="plots/run.png", show=False)

This module contains no model, configuration or control code and is safe to
modify independently (styling, labels, colors, scaling, etc.).

METRICS:
    • SLA violation ratio (fraction of samples beyond the target)
    • Mean absolute relative error against the target
    • Share statistics per VM (mean, std, min, max)
"""
from __future__ import annotations

import math
from typing import Dict, Optional

import numpy as np
import matplotlib.pyplot as plt

from manager.categories import ApplicationPerformanceCategory
from simulation.testbed_simulator import TestbedSimulator


# ============================================================
# PERFORMANCE METRICS
# ============================================================

def sla_violation_ratio(values: np.ndarray, target: float, higher_is_better: bool = False) -> float:
    values = np.asarray(values, dtype=float)
    if values.size == 0:
        return math.nan
    violated = values < target if higher_is_better else values > target
    return float(np.mean(violated))


def mean_absolute_error(values: np.ndarray, target: float) -> float:
    """Mean |y - r| / r over the series."""
    values = np.asarray(values, dtype=float)
    if values.size == 0:
        return math.nan
    return float(np.mean(np.abs(values - target)) / target)


def share_statistics(shares: np.ndarray) -> Dict[str, np.ndarray]:
    """Column-wise statistics of a (steps x VMs) share matrix."""
    shares = np.atleast_2d(np.asarray(shares, dtype=float))
    return {
        "mean": shares.mean(axis=0),
        "std": shares.std(axis=0),
        "min": shares.min(axis=0),
        "max": shares.max(axis=0),
    }


def compute_metrics(sim: TestbedSimulator, targets: Dict[ApplicationPerformanceCategory, float]) -> Dict[str, float]:
    metrics: Dict[str, float] = {}
    if ApplicationPerformanceCategory.RESPONSE_TIME in targets:
        r = targets[ApplicationPerformanceCategory.RESPONSE_TIME]
        metrics["rt_sla_violation"] = sla_violation_ratio(sim.log_rt, r)
        metrics["rt_mae"] = mean_absolute_error(sim.log_rt, r)
    if ApplicationPerformanceCategory.THROUGHPUT in targets:
        r = targets[ApplicationPerformanceCategory.THROUGHPUT]
        metrics["tput_sla_violation"] = sla_violation_ratio(sim.log_throughput, r, higher_is_better=True)
        metrics["tput_mae"] = mean_absolute_error(sim.log_throughput, r)
    if sim.log_cpu_share:
        stats = share_statistics(sim.log_cpu_share)
        for vm_id, mean in zip(sim.vm_ids(), stats["mean"]):
            metrics[f"cpu_share_mean[{vm_id}]"] = float(mean)
    return metrics


# ============================================================
# MAIN PLOTTING FUNCTION
# ============================================================

_OUTCOME_STYLE = {
    "applied": ("g", "o"),
    "skipped": ("gray", "x"),
    "failed": ("r", "v"),
}


def plot_sim_results(
    sim: TestbedSimulator,
    trace=None,
    manager=None,
    title: str = "FC2Q Testbed Simulation",
    save_path: Optional[str] = None,
    show: bool = True,
):
    t = np.array(sim.log_t)
    rate = np.array(sim.log_rate)
    rt = np.array(sim.log_rt)
    cpu_share = np.atleast_2d(np.array(sim.log_cpu_share))
    cpu_util = np.atleast_2d(np.array(sim.log_cpu_util))
    mem_share = np.atleast_2d(np.array(sim.log_mem_share))
    mem_util = np.atleast_2d(np.array(sim.log_mem_util))

    targets = {}
    if manager is not None:
        targets = {cat: manager.target_value(cat) for cat in manager.target_metrics()}

    fig, axes = plt.subplots(4, 1, figsize=(11, 10), sharex=True)
    ax_rate, ax_rt, ax_cpu, ax_mem = axes

    ax_rate.plot(t, rate, label="arrival rate (req/s)")
    ax_rate.set_ylabel("Rate (req/s)")
    ax_rate.set_title(title)

    ax_rt.plot(t, rt, label="response time (s)")
    if ApplicationPerformanceCategory.RESPONSE_TIME in targets:
        ax_rt.axhline(targets[ApplicationPerformanceCategory.RESPONSE_TIME], color="r", linestyle="--", label="target")
    ax_rt.set_ylabel("Response time (s)")

    for j, vm_id in enumerate(sim.vm_ids()):
        if cpu_share.size:
            ax_cpu.plot(t, cpu_share[:, j], label=f"share {vm_id}")
            ax_cpu.plot(t, cpu_util[:, j], linestyle=":", label=f"util {vm_id}")
        if mem_share.size:
            ax_mem.plot(t, mem_share[:, j], label=f"share {vm_id}")
            ax_mem.plot(t, mem_util[:, j], linestyle=":", label=f"util {vm_id}")
    ax_cpu.set_ylabel("CPU")
    ax_mem.set_ylabel("Memory")
    ax_mem.set_xlabel("Time (s)")

    # Control outcomes on the response-time axis
    if trace is not None and trace.t:
        y = float(np.nanmax(rt)) if rt.size else 1.0
        for outcome, (color, marker) in _OUTCOME_STYLE.items():
            ts = [tk for tk, o in zip(trace.t, trace.outcome) if o == outcome]
            if ts:
                ax_rt.scatter(ts, [y] * len(ts), color=color, marker=marker, s=14, label=f"control {outcome}")

    for ax in axes:
        ax.grid(True, alpha=0.3)
        ax.legend(loc="upper right", fontsize=8)

    plt.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=120)
    if show:
        plt.show()

    # Performance metrics
    print("\n=== PERFORMANCE METRICS ===")
    for name, value in compute_metrics(sim, targets).items():
        print(f"{name:<28} {value:.4f}")
    if trace is not None and trace.counts:
        n, skip, fail = trace.counts[-1]
        print(f"Controls: {n}  skipped: {skip}  failed: {fail}")
    print("====================================\n")

    return fig
