"""Simulation runner: steps the simulated testbed and drives the application
manager's sample/control cycle on simulated time, playing the role of the
external scheduler.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from manager.base_manager import BaseApplicationManager
from simulation.testbed_simulator import TestbedSimulator
from utils.profiler import CodeProfiler
from utils.logger import set_loop_index

sim_log = logging.getLogger("simulation")


@dataclass
class ControlTrace:
    """Per-control record collected through the manager's control observer."""

    t: List[float] = field(default_factory=list)
    outcome: List[str] = field(default_factory=list)
    cpu_share: List[List[float]] = field(default_factory=list)
    memory_share: List[List[float]] = field(default_factory=list)
    error: List[Dict[int, float]] = field(default_factory=list)
    counts: List[tuple] = field(default_factory=list)

    def record(self, t: float, manager: BaseApplicationManager) -> None:
        vms = manager.app.vms()
        self.t.append(t)
        self.cpu_share.append([vm.cpu_share() for vm in vms])
        self.memory_share.append([vm.memory_share() for vm in vms])

        # Only managers keeping counters (e.g. FC2Q) fill these columns.
        outcome = getattr(manager, "last_outcome", None)
        self.outcome.append(outcome.value if outcome is not None else "")
        last_error = getattr(manager, "last_error", None)
        self.error.append(
            {int(cat): last_error(cat) for cat in manager.target_metrics()} if last_error else {}
        )
        self.counts.append(
            (
                getattr(manager, "ctl_count", 0),
                getattr(manager, "ctl_skip_count", 0),
                getattr(manager, "ctl_fail_count", 0),
            )
        )


def run_managed_simulation(
    sim: TestbedSimulator,
    manager: BaseApplicationManager,
    duration: float,
) -> ControlTrace:
    """
    Runs `duration` seconds of simulated time.

    The manager is reset once, then sample() is called every sampling_time
    milliseconds and control() every control_time milliseconds. When both
    fall due in the same step, sampling runs first.

    Returns:
        ControlTrace: one entry per control() call.
    """
    trace = ControlTrace()
    sim.reset()
    manager.reset()
    manager.add_on_control_handler(lambda m: trace.record(sim.t, m))

    ts = manager.sampling_time / 1000.0
    tc = manager.control_time / 1000.0
    next_sample, next_control = ts, tc
    n_steps = int(round(duration / sim.cfg.dt))
    n_control = 0
    eps = 1e-9 * sim.cfg.dt

    sim_log.info(
        "Simulating %.1f s (dt=%.3f s, Ts=%.3f s, Tc=%.3f s, %d VMs)",
        duration, sim.cfg.dt, ts, tc, sim.app.num_vms(),
    )

    for _ in range(n_steps):
        sim.step()

        while sim.t + eps >= next_sample:
            manager.sample()
            next_sample += ts

        while sim.t + eps >= next_control:
            n_control += 1
            set_loop_index(n_control)
            with CodeProfiler("FC2Q control", budget_ms=tc * 1000.0):
                manager.control()
            next_control += tc

            if sim.log_rt:
                sim_log.debug(
                    "t=%.1f rate=%.2f rt=%.4f shares=%s",
                    sim.t, sim.log_rate[-1], sim.log_rt[-1],
                    [round(s, 3) for s in trace.cpu_share[-1]],
                )

    set_loop_index(-1)
    sim_log.info("Simulation done: %d control steps.", n_control)
    return trace


def main():
    from simulation.central_config import load_simulation_config
    from simulation.plot_sim_results import plot_sim_results

    sim, manager, duration = load_simulation_config()
    try:
        trace = run_managed_simulation(sim, manager, duration)
    finally:
        manager.close()
    plot_sim_results(sim, trace, manager)


if __name__ == "__main__":
    main()
