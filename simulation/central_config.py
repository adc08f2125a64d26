# simulation/central_config.py
"""
==================
Unified configuration loader for the FC2Q testbed.

This module provides a single, centralized interface for loading all
configuration inputs needed to run a managed-application experiment.
It parses the TOML configuration file and constructs every dataclass and
controller object, so that the rest of the project remains independent of
file formats and configuration layout.

Responsibilities
----------------
• Load experiment parameters from:
      config/sim_config.toml

• Construct the following dataclasses:
      - ApplicationParams  (queueing model of the application)
      - TierParams         (one per VM / tier)
      - SimConfig          (time step, noise, logging, workload)
      - ManagerConfig      (FC2Q manager settings)

• Build the workload (request arrival rate) from the perturbation tables:
      [workload], [step], [ramp], [impulse], [sine], [[multi_sine]], [noise]

• Build the simulator and the FC2Q application manager bound to its
  simulated application, with the configured targets, estimators and
  per-VM smoother kind.

Returned Values
---------------
load_simulation_config() returns a 3-tuple:

    sim       : TestbedSimulator
    manager   : FC2QApplicationManager
    duration  : float (seconds of simulated time)

Typical Usage
-------------
    from simulation.central_config import load_simulation_config
    from simulation.run_simulation import run_managed_simulation

    sim, manager, duration = load_simulation_config()
    trace = run_managed_simulation(sim, manager, duration)

Malformed or missing sections are reported as ConfigurationError; invalid
values are reported by the objects they configure.
"""
import tomllib
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from manager.categories import parse_application_category, ApplicationPerformanceCategory
from manager.estimators import make_estimator
from manager.exceptions import ConfigurationError
from manager.fc2q_manager import DEFAULT_SMOOTHING_FACTOR, FC2QApplicationManager
from simulation.perturbations import Perturbation
from simulation.testbed_simulator import (
    ApplicationParams,
    SimConfig,
    TestbedSimulator,
    TierParams,
)


@dataclass
class ManagerConfig:
    sampling_time_ms: float = 1000.0
    control_time_ms: float = 10000.0
    smoothing_factor: float = DEFAULT_SMOOTHING_FACTOR
    data_file: Optional[str] = None
    reset_estimation_every_interval: bool = False
    estimator: str = "mean"
    estimator_params: Dict[str, float] = field(default_factory=dict)
    smoother: str = "brown_ses"
    smoother_params: Dict[str, float] = field(default_factory=dict)
    targets: Dict[ApplicationPerformanceCategory, float] = field(default_factory=dict)


# ------------------------------------------------------------
# Load TOML
# ------------------------------------------------------------
def _load_toml(path: str) -> dict:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file '{path}': {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Malformed configuration file '{path}': {e}") from e


def _section(cfg: dict, name: str) -> dict:
    if name not in cfg:
        raise ConfigurationError(f"Missing configuration section [{name}]")
    return cfg[name]


# ------------------------------------------------------------
# Section parsers
# ------------------------------------------------------------
def parse_tiers(cfg: dict) -> List[TierParams]:
    tiers = cfg.get("tiers", [])
    if not tiers:
        raise ConfigurationError("At least one [[tiers]] entry is required")
    try:
        return [
            TierParams(
                name=str(t["name"]),
                cpu_demand=float(t["cpu_demand"]),
                mem_working_set=float(t.get("mem_working_set", 0.2)),
                mem_per_rps=float(t.get("mem_per_rps", 0.0)),
                cpu_share=float(t.get("cpu_share", 1.0)),
                memory_share=float(t.get("memory_share", 1.0)),
                max_vcpus=int(t.get("max_vcpus", 1)),
            )
            for t in tiers
        ]
    except KeyError as e:
        raise ConfigurationError(f"Missing tier parameter: {e}") from e
    except ValueError as e:
        raise ConfigurationError(f"Invalid tier parameter: {e}") from e


def parse_workload(cfg: dict) -> Perturbation:
    """Builds the arrival-rate model from the workload tables."""
    perturb = Perturbation(base_rate=float(_section(cfg, "workload")["base_rate"]))

    # --- Step changes ---
    if "step" in cfg and cfg["step"].get("enable", False):
        for ev in cfg["step"].get("events", []):
            perturb.add_step(float(ev["t0"]), float(ev["t1"]), float(ev["magnitude"]))

    # --- Ramps ---
    if "ramp" in cfg and cfg["ramp"].get("enable", False):
        for ev in cfg["ramp"].get("events", []):
            perturb.add_ramp(float(ev["t0"]), float(ev["t1"]), float(ev["magnitude"]))

    # --- Request bursts ---
    if "impulse" in cfg and cfg["impulse"].get("enable", False):
        for ev in cfg["impulse"].get("events", []):
            perturb.add_spike(float(ev["t0"]), float(ev.get("duration", 1.0)), float(ev["magnitude"]))

    # --- Periodic load ---
    if "sine" in cfg and cfg["sine"].get("enable", False):
        s = cfg["sine"]
        perturb.add_sine(
            amplitude=float(s["amplitude"]),
            period=float(s["period"]),
            phase=float(s.get("phase", 0.0)),
            t_start=float(s.get("t_start", 0.0)),
            t_end=float(s.get("t_end", float("inf"))),
        )

    for ev in cfg.get("multi_sine", []):
        perturb.add_sine(
            amplitude=float(ev["amplitude"]),
            period=float(ev["period"]),
            phase=float(ev.get("phase", 0.0)),
            t_start=float(ev.get("t_start", 0.0)),
            t_end=float(ev.get("t_end", float("inf"))),
        )

    if "noise" in cfg and cfg["noise"].get("enable", False):
        perturb.add_noise(float(cfg["noise"]["std"]))

    return perturb


def parse_manager(cfg: dict) -> ManagerConfig:
    mcfg = _section(cfg, "manager")
    targets = {}
    for name, value in mcfg.get("targets", {}).items():
        try:
            targets[parse_application_category(name)] = float(value)
        except ValueError as e:
            raise ConfigurationError(f"Invalid target '{name}': {e}") from e
    if not targets:
        raise ConfigurationError("No performance target set in [manager.targets]")

    data_file = mcfg.get("data_file") or None
    return ManagerConfig(
        sampling_time_ms=float(mcfg.get("sampling_time_ms", 1000.0)),
        control_time_ms=float(mcfg.get("control_time_ms", 10000.0)),
        smoothing_factor=float(mcfg.get("smoothing_factor", DEFAULT_SMOOTHING_FACTOR)),
        data_file=data_file,
        reset_estimation_every_interval=bool(mcfg.get("reset_estimation_every_interval", False)),
        estimator=str(mcfg.get("estimator", "mean")),
        estimator_params=dict(mcfg.get("estimator_params", {})),
        smoother=str(mcfg.get("smoother", "brown_ses")),
        smoother_params=dict(mcfg.get("smoother_params", {})),
        targets=targets,
    )


def build_manager(mgr_cfg: ManagerConfig, app) -> FC2QApplicationManager:
    """
    Creates an FC2Q manager for `app` with one fresh estimator per target.
    The configured smoother kind is used for the per-VM utilization smoothers.
    The caller still has to call reset() before sampling.
    """
    manager = FC2QApplicationManager(
        smoothing_factor=mgr_cfg.smoothing_factor,
        data_file=mgr_cfg.data_file,
        reset_estimation_every_interval=mgr_cfg.reset_estimation_every_interval,
        vm_smoother=mgr_cfg.smoother,
        vm_smoother_params=mgr_cfg.smoother_params,
    )
    manager.sampling_time = mgr_cfg.sampling_time_ms
    manager.control_time = mgr_cfg.control_time_ms
    manager.app = app
    for cat, value in mgr_cfg.targets.items():
        manager.set_target_value(cat, value)
        manager.set_data_estimator(cat, make_estimator(mgr_cfg.estimator, **mgr_cfg.estimator_params))
    return manager


# ------------------------------------------------------------
# Main loader
# ------------------------------------------------------------
def load_simulation_config(
    sim_cfg_path: str = "config/sim_config.toml",
) -> Tuple[TestbedSimulator, FC2QApplicationManager, float]:
    """
    Builds and returns the full experiment:

        sim       : TestbedSimulator
        manager   : FC2QApplicationManager (configured, not yet reset)
        duration  : float
    """
    cfg = _load_toml(sim_cfg_path)

    # ------------------------------------------------------------
    # Simulation configuration
    # ------------------------------------------------------------
    scfg = _section(cfg, "simulation")
    sensors = cfg.get("sensors", {})
    seed = scfg.get("seed")
    sim_cfg = SimConfig(
        dt=float(scfg.get("dt", 1.0)),
        steps_per_log=int(scfg.get("steps_per_log", 1)),
        cpu_noise_std=float(sensors.get("cpu_noise_std", 0.02)),
        mem_noise_std=float(sensors.get("mem_noise_std", 0.01)),
        rt_noise_std=float(sensors.get("rt_noise_std", 0.05)),
        sensor_dropout=float(sensors.get("dropout", 0.0)),
        seed=int(seed) if seed is not None else None,
        perturb=parse_workload(cfg),
    )
    duration = float(scfg["duration_s"])

    # ------------------------------------------------------------
    # Application model
    # ------------------------------------------------------------
    acfg = cfg.get("application", {})
    app_params = ApplicationParams(
        rho_max=float(acfg.get("rho_max", 0.99)),
        mem_penalty=float(acfg.get("mem_penalty", 4.0)),
    )
    sim = TestbedSimulator(app_params, parse_tiers(cfg), sim_cfg)

    # ------------------------------------------------------------
    # Manager
    # ------------------------------------------------------------
    manager = build_manager(parse_manager(cfg), sim.app)

    return sim, manager, duration
