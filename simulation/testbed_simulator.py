"""
testbed_simulator.py
====================

Simulated multi-tier application for exercising application managers
without a hypervisor.

Each tier runs in its own VM and is modelled as a queue whose service
capacity is proportional to the VM CPU share:

    • CPU demand:        u_i = lambda * d_i            (fraction of the VM)
    • CPU utilization:   min(u_i, cpu_share_i) + noise
    • Tier load:         rho_i = u_i / cpu_share_i     (capped at rho_max)
    • Tier residence:    R_i = (d_i / cpu_share_i) / (1 - rho_i)
    • Memory need:       m_i = working_set_i + mem_per_rps_i * lambda
    • Memory pressure:   R_i *= 1 + mem_penalty * (m_i - mem_share_i) / m_i
                         when mem_share_i < m_i
    • Response time:     R = sum_i R_i
    • Throughput:        X = min(lambda, min_i cpu_share_i / d_i)

The arrival rate lambda(t) comes from simulation.perturbations.Perturbation.

The simulated VMs and application expose the same surface as real ones
(manager.interfaces), so any application manager can be bound to them.
Every step pushes one observation into each sensor; sensors release their
pending observations on sense().

Typical usage::

    sim = TestbedSimulator(app_params, tiers, cfg)
    manager.app = sim.app
    sim.reset()
    sim.run(60.0)

    # logs available in sim.log_t, sim.log_rt, sim.log_cpu_share, etc.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from manager.categories import (
    ApplicationPerformanceCategory,
    VirtualMachinePerformanceCategory,
)
from simulation.perturbations import Perturbation


# ------------------------------------------------------------
# Dataclasses
# ------------------------------------------------------------

@dataclass
class TierParams:
    name: str
    cpu_demand: float            # CPU-seconds per request on the whole VM
    mem_working_set: float = 0.2 # fraction of VM memory needed at zero load
    mem_per_rps: float = 0.0     # extra memory fraction per request/s
    cpu_share: float = 1.0
    memory_share: float = 1.0
    max_vcpus: int = 1

    def __post_init__(self):
        if not self.cpu_demand > 0:
            raise ValueError(f"Tier '{self.name}': cpu_demand must be positive ({self.cpu_demand})")
        if self.max_vcpus < 1:
            raise ValueError(f"Tier '{self.name}': max_vcpus must be at least 1 ({self.max_vcpus})")


@dataclass
class ApplicationParams:
    rho_max: float = 0.99
    mem_penalty: float = 4.0


@dataclass
class SimConfig:
    dt: float = 1.0              # seconds
    steps_per_log: int = 1
    cpu_noise_std: float = 0.02
    mem_noise_std: float = 0.01
    rt_noise_std: float = 0.05   # relative
    sensor_dropout: float = 0.0  # probability of losing an observation
    seed: Optional[int] = None
    perturb: Perturbation = field(default_factory=Perturbation)


# ------------------------------------------------------------
# Sensors, VMs and application
# ------------------------------------------------------------

class SimulatedSensor:
    """Buffers observations pushed by the simulator until sensed."""

    def __init__(self):
        self._pending: List[float] = []
        self._ready: List[float] = []

    def push(self, value: float) -> None:
        self._pending.append(float(value))

    def sense(self) -> None:
        self._ready.extend(self._pending)
        self._pending.clear()

    def has_observations(self) -> bool:
        return bool(self._ready)

    def observations(self) -> List[float]:
        obs, self._ready = self._ready, []
        return obs

    def clear(self) -> None:
        self._pending.clear()
        self._ready.clear()


class SimulatedVM:
    def __init__(self, params: TierParams):
        self.params = params
        self._cpu_share = 1.0
        self._memory_share = 1.0
        self.set_cpu_share(params.cpu_share)
        self.set_memory_share(params.memory_share)
        self._sensors: Dict[VirtualMachinePerformanceCategory, SimulatedSensor] = {
            VirtualMachinePerformanceCategory.CPU_UTIL: SimulatedSensor(),
            VirtualMachinePerformanceCategory.MEMORY_UTIL: SimulatedSensor(),
        }

    def id(self) -> str:
        return self.params.name

    def cpu_share(self) -> float:
        return self._cpu_share

    def set_cpu_share(self, share: float) -> None:
        if not 0.0 <= share <= 1.0:
            raise ValueError(f"Invalid CPU share {share} for VM '{self.id()}'")
        self._cpu_share = float(share)

    def memory_share(self) -> float:
        return self._memory_share

    def set_memory_share(self, share: float) -> None:
        if not 0.0 <= share <= 1.0:
            raise ValueError(f"Invalid memory share {share} for VM '{self.id()}'")
        self._memory_share = float(share)

    def cpu_cap(self) -> float:
        # Xen credit-scheduler semantics: 0 means no upper cap.
        if self._cpu_share < 1.0:
            return float(int(self._cpu_share * self.params.max_vcpus * 100))
        return 0.0

    def sensor(self, category: VirtualMachinePerformanceCategory) -> SimulatedSensor:
        return self._sensors[VirtualMachinePerformanceCategory(category)]


class SimulatedApplication:
    def __init__(self, vms: List[SimulatedVM]):
        self._vms = list(vms)
        self._sensors: Dict[ApplicationPerformanceCategory, SimulatedSensor] = {
            ApplicationPerformanceCategory.RESPONSE_TIME: SimulatedSensor(),
            ApplicationPerformanceCategory.THROUGHPUT: SimulatedSensor(),
        }

    def vms(self) -> List[SimulatedVM]:
        return list(self._vms)

    def num_vms(self) -> int:
        return len(self._vms)

    def sensor(self, category: ApplicationPerformanceCategory) -> SimulatedSensor:
        return self._sensors[ApplicationPerformanceCategory(category)]


# ------------------------------------------------------------
# Simulator
# ------------------------------------------------------------

@dataclass
class TestbedSimulator:
    app_params: ApplicationParams
    tiers: List[TierParams]
    cfg: SimConfig = field(default_factory=SimConfig)

    t: float = 0.0

    log_t: List[float] = field(default_factory=list)
    log_rate: List[float] = field(default_factory=list)
    log_rt: List[float] = field(default_factory=list)
    log_throughput: List[float] = field(default_factory=list)
    log_cpu_share: List[List[float]] = field(default_factory=list)
    log_cpu_util: List[List[float]] = field(default_factory=list)
    log_mem_share: List[List[float]] = field(default_factory=list)
    log_mem_util: List[List[float]] = field(default_factory=list)
    _log_decim: int = 0

    def __post_init__(self):
        if not self.tiers:
            raise ValueError("The simulated application needs at least one tier")
        if self.cfg.dt <= 0:
            raise ValueError(f"Invalid simulation step: {self.cfg.dt}")
        self.rng = np.random.default_rng(self.cfg.seed)
        if self.cfg.perturb.rng is None:
            self.cfg.perturb.rng = self.rng
        self.app = SimulatedApplication([SimulatedVM(p) for p in self.tiers])

    # ------------------------------------------------------------
    def reset(self, t=0.0):
        self.t = t
        for log in (
            self.log_t, self.log_rate, self.log_rt, self.log_throughput,
            self.log_cpu_share, self.log_cpu_util, self.log_mem_share, self.log_mem_util,
        ):
            log.clear()
        self._log_decim = 0
        for vm in self.app.vms():
            vm.sensor(VirtualMachinePerformanceCategory.CPU_UTIL).clear()
            vm.sensor(VirtualMachinePerformanceCategory.MEMORY_UTIL).clear()
        for cat in ApplicationPerformanceCategory:
            self.app.sensor(cat).clear()

    # ------------------------------------------------------------
    def vm_ids(self) -> List[str]:
        return [vm.id() for vm in self.app.vms()]

    def _observe(self, sensor: SimulatedSensor, value: float) -> None:
        if self.cfg.sensor_dropout > 0 and self.rng.random() < self.cfg.sensor_dropout:
            return
        sensor.push(value)

    def performance(self, lam: float):
        """
        Noise-free model outputs for arrival rate lam at the current shares.

        Returns:
            (response_time, throughput, cpu_utils, mem_utils)
        """
        rho_max = self.app_params.rho_max
        rt = 0.0
        capacity = float("inf")
        cpu_utils, mem_utils = [], []
        for vm in self.app.vms():
            p = vm.params
            share = vm.cpu_share()
            demand = lam * p.cpu_demand
            cpu_utils.append(min(demand, share))

            if share > 0:
                rho = min(demand / share, rho_max)
                r_i = (p.cpu_demand / share) / (1.0 - rho)
                capacity = min(capacity, share / p.cpu_demand)
            else:
                r_i = p.cpu_demand / (1.0 - rho_max) * 1e3
                capacity = 0.0

            need = min(1.0, p.mem_working_set + p.mem_per_rps * lam)
            mshare = vm.memory_share()
            mem_utils.append(min(need, mshare))
            if need > 0 and mshare < need:
                r_i *= 1.0 + self.app_params.mem_penalty * (need - mshare) / need
            rt += r_i

        return rt, min(lam, capacity), cpu_utils, mem_utils

    # ------------------------------------------------------------
    def step(self):
        lam = self.cfg.perturb.rate(self.t)
        rt, throughput, cpu_utils, mem_utils = self.performance(lam)

        for vm, u, m in zip(self.app.vms(), cpu_utils, mem_utils):
            u_obs = float(np.clip(u + self.rng.normal(0.0, self.cfg.cpu_noise_std), 0.0, 1.0))
            m_obs = float(np.clip(m + self.rng.normal(0.0, self.cfg.mem_noise_std), 0.0, 1.0))
            self._observe(vm.sensor(VirtualMachinePerformanceCategory.CPU_UTIL), u_obs)
            self._observe(vm.sensor(VirtualMachinePerformanceCategory.MEMORY_UTIL), m_obs)

        rt_obs = max(0.0, rt * (1.0 + self.rng.normal(0.0, self.cfg.rt_noise_std)))
        self._observe(self.app.sensor(ApplicationPerformanceCategory.RESPONSE_TIME), rt_obs)
        self._observe(self.app.sensor(ApplicationPerformanceCategory.THROUGHPUT), throughput)

        self.t += self.cfg.dt

        # Logging (decimated)
        self._log_decim += 1
        if self._log_decim >= self.cfg.steps_per_log:
            vms = self.app.vms()
            self.log_t.append(self.t)
            self.log_rate.append(lam)
            self.log_rt.append(rt)
            self.log_throughput.append(throughput)
            self.log_cpu_share.append([vm.cpu_share() for vm in vms])
            self.log_cpu_util.append(cpu_utils)
            self.log_mem_share.append([vm.memory_share() for vm in vms])
            self.log_mem_util.append(mem_utils)
            self._log_decim = 0

    # ------------------------------------------------------------
    def run(self, seconds):
        steps = int(round(seconds / self.cfg.dt))
        for _ in range(steps):
            self.step()
