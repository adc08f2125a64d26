"""
Application manager implementing the FC2Q fuzzy MIMO controller.

Every control interval, for each VM of the managed application, the manager
computes the CPU and memory residuals (assigned share minus forecasted
utilization) and, once per interval, the normalized application error
against its target. These three signals drive a Mamdani fuzzy engine whose
outputs are the recommended changes of the CPU and memory shares. Shares are
updated all together, clamped to [0, 1], or not at all.

Reference:
    C. Anglano, M. Canonico and M. Guazzone, "FC2Q: Exploiting Fuzzy Control
    in Server Consolidation for Cloud Applications with SLA Constraints,"
    Future Generation Computer Systems, 2014.
"""

import enum
import logging
import math
import sys
import time
from typing import Dict, List, Optional

from flc.engine import FuzzyEngine, InferenceError
from flc.fuzzifier import Variable, ramp, triangle
from manager.base_manager import BaseApplicationManager
from manager.categories import (
    ApplicationPerformanceCategory,
    VirtualMachinePerformanceCategory,
)
from manager.exceptions import ConfigurationError, InvalidArgumentError
from manager.interfaces import Sensor, VirtualMachine
from manager.smoothers import BaseSmoother, make_smoother

fc2q_log = logging.getLogger("fc2q")

ERR_VAR = "E"
CRES_VAR = "Cres"
DELTAC_VAR = "DeltaC"
MRES_VAR = "Mres"
DELTAM_VAR = "DeltaM"

DEFAULT_SMOOTHING_FACTOR = 0.9
DEFAULT_VM_SMOOTHER = "brown_ses"

_FLOAT_EPS = sys.float_info.epsilon

# resource term -> error term -> output term
FC2Q_RULE_TABLE = {
    "NEG": {"LOW": "BUP", "FINE": "UP", "HIGH": "UP"},
    "OK": {"LOW": "UP", "FINE": "STY", "HIGH": "DWN"},
    "POS": {"LOW": "STY", "FINE": "DWN", "HIGH": "BDW"},
}


class ControlOutcome(enum.Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


def _residual_variable(name: str) -> Variable:
    return Variable(
        name,
        0.0,
        1.0,
        [
            ramp("NEG", 0.30, 0.00),
            triangle("OK", 0.10, 0.25, 0.40),
            ramp("POS", 0.30, 1.00),
        ],
    )


def _delta_variable(name: str) -> Variable:
    return Variable(
        name,
        -1.0,
        1.0,
        [
            triangle("BDW", -1.00, -0.55, -0.10),
            triangle("DWN", -0.20, -0.125, -0.05),
            triangle("STY", -0.10, 0.00, 0.10),
            triangle("UP", 0.05, 0.125, 0.20),
            triangle("BUP", 0.10, 0.55, 1.00),
        ],
    )


def fc2q_rules() -> List[str]:
    """The 18 FC2Q rules, CPU rules first, as rule text."""
    rules = []
    for res_var, out_var in ((CRES_VAR, DELTAC_VAR), (MRES_VAR, DELTAM_VAR)):
        for res_term, row in FC2Q_RULE_TABLE.items():
            for err_term, out_term in row.items():
                rules.append(
                    f"if {res_var} is {res_term} and {ERR_VAR} is {err_term} then {out_var} is {out_term}"
                )
    return rules


def build_fc2q_engine() -> FuzzyEngine:
    """Builds the fixed FC2Q fuzzy engine (3 inputs, 2 outputs, 18 rules)."""
    error = Variable(
        ERR_VAR,
        -1.0,
        1.0,
        [
            ramp("LOW", 0.20, -0.40),
            triangle("FINE", 0.10, 0.20, 0.30),
            ramp("HIGH", 0.30, 1.00),
        ],
    )
    return FuzzyEngine(
        inputs=[_residual_variable(CRES_VAR), _residual_variable(MRES_VAR), error],
        outputs=[_delta_variable(DELTAC_VAR), _delta_variable(DELTAM_VAR)],
        rules=fc2q_rules(),
    )


def essentially_equal(a: float, b: float, tol: float = _FLOAT_EPS) -> bool:
    return abs(a - b) <= max(abs(a), abs(b)) * tol


def _fmt(value: float) -> str:
    return format(value, "g")


class FC2QApplicationManager(BaseApplicationManager):
    """
    The FC2Q fuzzy controller.

    Attributes:
        smoothing_factor (float): EWMA factor of the per-VM utilization
            smoothers, in (0, 1]. Used as the Brown smoother's alpha unless
            vm_smoother_params sets one.
        vm_smoother (str): Kind of the per-VM utilization smoothers, as
            accepted by make_smoother().
        vm_smoother_params (Dict[str, float]): Parameters of those smoothers.
        data_file (Optional[str]): Path of the per-control CSV log, or None.
        reset_estimation_every_interval (bool): Reset the application
            estimators after each control step.
    """

    def __init__(
        self,
        smoothing_factor: float = DEFAULT_SMOOTHING_FACTOR,
        data_file: Optional[str] = None,
        reset_estimation_every_interval: bool = False,
        vm_smoother: str = DEFAULT_VM_SMOOTHER,
        vm_smoother_params: Optional[Dict[str, float]] = None,
    ):
        super().__init__()
        self._beta = DEFAULT_SMOOTHING_FACTOR
        self.smoothing_factor = smoothing_factor
        self.data_file = data_file
        self.reset_estimation_every_interval = reset_estimation_every_interval
        self.vm_smoother = vm_smoother
        self.vm_smoother_params = dict(vm_smoother_params or {})
        # Unknown kinds fail here rather than on reset()
        self._make_vm_smoother()

        self._engine = build_fc2q_engine()
        self._vm_perf_cats = [
            VirtualMachinePerformanceCategory.CPU_UTIL,
            VirtualMachinePerformanceCategory.MEMORY_UTIL,
        ]
        self._in_sensors: Dict[VirtualMachinePerformanceCategory, Dict[str, Sensor]] = {}
        self._out_sensors: Dict[ApplicationPerformanceCategory, Sensor] = {}
        self._in_obs_counts: Dict[tuple, int] = {}
        self._out_obs_counts: Dict[ApplicationPerformanceCategory, int] = {}
        self._dat_file = None

        self._ctl_count = 0
        self._ctl_skip_count = 0
        self._ctl_fail_count = 0
        self._ctl_applied_count = 0

        self._last_outcome: Optional[ControlOutcome] = None
        self._last_residuals: Dict[VirtualMachinePerformanceCategory, List[float]] = {}
        self._last_errors: Dict[ApplicationPerformanceCategory, float] = {}
        self._last_deltas: Dict[VirtualMachinePerformanceCategory, List[float]] = {}

    # ------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------
    @property
    def smoothing_factor(self) -> float:
        return self._beta

    @smoothing_factor.setter
    def smoothing_factor(self, value: float) -> None:
        value = float(value)
        if not 0.0 < value <= 1.0:
            raise InvalidArgumentError(f"Invalid smoothing factor: {value} (must be in (0, 1])")
        self._beta = value

    def export_data_to(self, path: Optional[str]) -> None:
        """Sets the CSV log path; None or '' disables the log. Applied on reset()."""
        self.data_file = path or None

    def _make_vm_smoother(self) -> BaseSmoother:
        params = dict(self.vm_smoother_params)
        if self.vm_smoother.strip().lower() == "brown_ses":
            params.setdefault("alpha", self._beta)
        return make_smoother(self.vm_smoother, **params)

    @property
    def engine(self) -> FuzzyEngine:
        return self._engine

    # ------------------------------------------------------------
    # Counters and last-cycle results
    # ------------------------------------------------------------
    @property
    def ctl_count(self) -> int:
        return self._ctl_count

    @property
    def ctl_skip_count(self) -> int:
        return self._ctl_skip_count

    @property
    def ctl_fail_count(self) -> int:
        return self._ctl_fail_count

    @property
    def ctl_applied_count(self) -> int:
        return self._ctl_applied_count

    @property
    def last_outcome(self) -> Optional[ControlOutcome]:
        return self._last_outcome

    def last_residuals(self, category: VirtualMachinePerformanceCategory) -> List[float]:
        return list(self._last_residuals.get(category, []))

    def last_error(self, category: ApplicationPerformanceCategory) -> float:
        return self._last_errors.get(category, math.nan)

    def last_deltas(self, category: VirtualMachinePerformanceCategory) -> List[float]:
        return list(self._last_deltas.get(category, []))

    # ------------------------------------------------------------
    # Category dispatch
    # ------------------------------------------------------------
    @staticmethod
    def _share(vm: VirtualMachine, category: VirtualMachinePerformanceCategory) -> float:
        if category == VirtualMachinePerformanceCategory.CPU_UTIL:
            return vm.cpu_share()
        elif category == VirtualMachinePerformanceCategory.MEMORY_UTIL:
            return vm.memory_share()
        raise ValueError(f"Unknown VM performance category: {category!r}")

    @staticmethod
    def _set_share(vm: VirtualMachine, category: VirtualMachinePerformanceCategory, share: float) -> None:
        if category == VirtualMachinePerformanceCategory.CPU_UTIL:
            vm.set_cpu_share(share)
        elif category == VirtualMachinePerformanceCategory.MEMORY_UTIL:
            vm.set_memory_share(share)
        else:
            raise ValueError(f"Unknown VM performance category: {category!r}")

    @staticmethod
    def _input_var(category: VirtualMachinePerformanceCategory) -> str:
        if category == VirtualMachinePerformanceCategory.CPU_UTIL:
            return CRES_VAR
        elif category == VirtualMachinePerformanceCategory.MEMORY_UTIL:
            return MRES_VAR
        raise ValueError(f"Unknown VM performance category: {category!r}")

    @staticmethod
    def _output_var(category: VirtualMachinePerformanceCategory) -> str:
        if category == VirtualMachinePerformanceCategory.CPU_UTIL:
            return DELTAC_VAR
        elif category == VirtualMachinePerformanceCategory.MEMORY_UTIL:
            return DELTAM_VAR
        raise ValueError(f"Unknown VM performance category: {category!r}")

    @staticmethod
    def compute_error(category: ApplicationPerformanceCategory, measured: float, target: float) -> float:
        """
        Normalized application error: positive when the application performs
        better than its target.
        """
        if category == ApplicationPerformanceCategory.RESPONSE_TIME:
            return (target - measured) / target
        elif category == ApplicationPerformanceCategory.THROUGHPUT:
            return (measured - target) / target
        raise ValueError(f"Unknown application performance category: {category!r}")

    # ------------------------------------------------------------
    # Lifecycle steps
    # ------------------------------------------------------------
    def _do_reset(self) -> None:
        app = self.app
        vms = app.vms()

        for cat in self.target_metrics():
            if cat not in self._app_estimators:
                raise ConfigurationError(f"No data estimator set for target category {cat.name}")
            if not self.target_value(cat) > 0:
                raise ConfigurationError(f"Target value for {cat.name} must be positive")

        # Output sensors
        self._out_sensors = {cat: app.sensor(cat) for cat in self.target_metrics()}

        # Input sensors
        self._in_sensors = {cat: {} for cat in self._vm_perf_cats}
        for vm in vms:
            for cat in self._vm_perf_cats:
                self._in_sensors[cat][vm.id()] = vm.sensor(cat)

        # Counters
        self._ctl_count = self._ctl_skip_count = self._ctl_fail_count = self._ctl_applied_count = 0
        self._last_outcome = None
        self._last_residuals, self._last_errors, self._last_deltas = {}, {}, {}

        self._engine.restart()

        # Estimators and smoothers
        for estimator in self._app_estimators.values():
            estimator.reset()
        for smoother in self._app_smoothers.values():
            smoother.reset()
        self.clear_vm_data()
        for vm in vms:
            for cat in self._vm_perf_cats:
                self.set_vm_data_smoother(cat, vm.id(), self._make_vm_smoother())
        self._in_obs_counts = {(cat, vm.id()): 0 for vm in vms for cat in self._vm_perf_cats}
        self._out_obs_counts = {cat: 0 for cat in self.target_metrics()}

        self._open_data_file(vms)
        fc2q_log.info(
            "FC2Q reset: %d VMs, targets=%s, beta=%.3f, data file=%s",
            len(vms),
            {cat.name: self.target_value(cat) for cat in self.target_metrics()},
            self._beta,
            self.data_file,
        )

    def _do_sample(self) -> None:
        fc2q_log.debug(
            "BEGIN SAMPLE - Count: %d/%d/%d", self._ctl_count, self._ctl_skip_count, self._ctl_fail_count
        )
        # Input values
        for cat, sensors in self._in_sensors.items():
            for vm_id, sensor in sensors.items():
                observations = self._read_sensor(sensor, f"{cat.name} of VM '{vm_id}'")
                smoother = self.vm_data_smoother(cat, vm_id)
                for value in observations:
                    smoother.smooth(value)
                self._in_obs_counts[(cat, vm_id)] += len(observations)

        # Output values
        for cat, sensor in self._out_sensors.items():
            observations = self._read_sensor(sensor, f"application {cat.name}")
            if observations:
                self.data_estimator(cat).collect(observations)
            self._out_obs_counts[cat] += len(observations)

    @staticmethod
    def _read_sensor(sensor: Sensor, what: str) -> List[float]:
        try:
            sensor.sense()
            if not sensor.has_observations():
                return []
            return [float(v) for v in sensor.observations()]
        except Exception as e:
            fc2q_log.warning("Unable to sample %s: %s", what, e)
            return []

    def _do_control(self) -> None:
        fc2q_log.debug(
            "BEGIN CONTROL - Count: %d/%d/%d", self._ctl_count, self._ctl_skip_count, self._ctl_fail_count
        )
        self._ctl_count += 1

        vms = self.app.vms()
        skip_ctl = False

        residuals: Dict[VirtualMachinePerformanceCategory, List[float]] = {cat: [] for cat in self._vm_perf_cats}
        for vm in vms:
            for cat in self._vm_perf_cats:
                smoother = self._vm_smoothers.get((cat, vm.id()))
                if smoother is None or self._in_obs_counts.get((cat, vm.id()), 0) == 0:
                    fc2q_log.debug("No %s observation for VM '%s' in the last interval -> Skip control", cat.name, vm.id())
                    skip_ctl = True
                uh = smoother.forecast(0) if smoother is not None else math.nan
                c = self._share(vm, cat)
                residuals[cat].append(c - uh)
                fc2q_log.debug("VM %s - %s - Uhat(k): %g - C(k): %g -> Xres(k+1): %g", vm.id(), cat.name, uh, c, c - uh)

        errors: Dict[ApplicationPerformanceCategory, float] = {}
        err = math.nan
        for cat in self.target_metrics():
            estimator = self.data_estimator(cat)
            if self._out_obs_counts.get(cat, 0) == 0:
                fc2q_log.debug("No %s observation in the last interval -> Skip control", cat.name)
                skip_ctl = True
            if estimator.count() > 0:
                yh = estimator.estimate()
                yr = self.target_value(cat)
                err = errors[cat] = self.compute_error(cat, yh, yr)
                fc2q_log.debug("APP %s - Yhat(k): %g - R: %g -> E(k+1): %g", cat.name, yh, yr, err)

        deltas: Dict[VirtualMachinePerformanceCategory, List[float]] = {}
        if skip_ctl:
            self._ctl_skip_count += 1
            self._last_outcome = ControlOutcome.SKIPPED
        else:
            ok = False
            try:
                deltas = self._compute_deltas(vms, residuals, err)
                ok = True
            except Exception as e:
                deltas = {}
                fc2q_log.warning("Unable to compute optimal control: %s", e)

            if ok:
                self._apply_deltas(vms, deltas)
                self._ctl_applied_count += 1
                self._last_outcome = ControlOutcome.APPLIED
                fc2q_log.debug("Optimal control applied")
            else:
                self._ctl_fail_count += 1
                self._last_outcome = ControlOutcome.FAILED
                fc2q_log.warning("Control not applied: failed to solve the control problem")

        self._last_residuals, self._last_errors, self._last_deltas = residuals, errors, deltas
        self._export_row(vms, residuals, errors)

        if self.reset_estimation_every_interval:
            for cat in self.target_metrics():
                self.data_estimator(cat).reset()
        for key in self._in_obs_counts:
            self._in_obs_counts[key] = 0
        for cat in self._out_obs_counts:
            self._out_obs_counts[cat] = 0
        fc2q_log.debug(
            "END CONTROL - Count: %d/%d/%d", self._ctl_count, self._ctl_skip_count, self._ctl_fail_count
        )

    def _compute_deltas(self, vms, residuals, err):
        """
        Runs one inference per VM. Raises if any inference fails, so that
        either every VM gets its deltas or none does.
        """
        deltas = {cat: [] for cat in self._vm_perf_cats}
        for i, vm in enumerate(vms):
            self._engine.restart()
            for cat in self._vm_perf_cats:
                self._engine.set_input_value(self._input_var(cat), residuals[cat][i])
            self._engine.set_input_value(ERR_VAR, err)

            self._engine.process()

            for cat in self._vm_perf_cats:
                out_var = self._output_var(cat)
                delta = self._engine.output_value(out_var)
                if not math.isfinite(delta):
                    raise InferenceError(f"Non-finite {out_var} ({delta}) for VM '{vm.id()}'")
                deltas[cat].append(delta)
                fc2q_log.debug("VM %s - %s -> DeltaX(k+1): %g", vm.id(), cat.name, delta)
        return deltas

    def _apply_deltas(self, vms, deltas) -> None:
        for i, vm in enumerate(vms):
            for cat in self._vm_perf_cats:
                old_share = self._share(vm, cat)
                new_share = max(min(old_share + deltas[cat][i], 1.0), 0.0)
                fc2q_log.debug("VM '%s' - %s - old-share: %g - new-share: %g", vm.id(), cat.name, old_share, new_share)
                if math.isfinite(new_share) and not essentially_equal(old_share, new_share):
                    try:
                        self._set_share(vm, cat, new_share)
                    except Exception as e:
                        fc2q_log.error("Unable to set %s share of VM '%s' to %g: %s", cat.name, vm.id(), new_share, e)

    # ------------------------------------------------------------
    # Data file
    # ------------------------------------------------------------
    def _open_data_file(self, vms) -> None:
        self.close()
        if not self.data_file:
            return
        try:
            self._dat_file = open(self.data_file, "w", encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Cannot open output data file '{self.data_file}': {e}") from e

        header = ['"ts"']
        for vm in vms:
            header.append(f'"Cap_{{{vm.id()}}}","Share_{{{vm.id()}}}"')
        for cat in self.target_metrics():
            header.append(f'"r_{{{cat.value}}}","y_{{{cat.value}}}","E_{{{cat.value}}}"')
        for vm in vms:
            header.append(f'"Cres_{{{vm.id()}}}"')
        header.append('"# Controls","# Skip Controls","# Fail Controls"')
        self._write_line(",".join(header))

    def _export_row(self, vms, residuals, errors) -> None:
        if self._dat_file is None:
            return
        fields = [str(int(time.time()))]
        for vm in vms:
            fields.append(_fmt(vm.cpu_cap()))
            fields.append(_fmt(vm.cpu_share()))
        for cat in self.target_metrics():
            fields.append(_fmt(self.target_value(cat)))
            fields.append(_fmt(self.data_estimator(cat).estimate()))
            fields.append(_fmt(errors.get(cat, math.nan)))
        # Only one physical resource is logged: the first category's residuals.
        first_cat = self._vm_perf_cats[0]
        for cres in residuals[first_cat]:
            fields.append(_fmt(cres))
        fields.extend(str(n) for n in (self._ctl_count, self._ctl_skip_count, self._ctl_fail_count))
        self._write_line(",".join(fields))

    def _write_line(self, line: str) -> None:
        try:
            self._dat_file.write(line + "\n")
            self._dat_file.flush()
        except OSError as e:
            fc2q_log.error("Unable to write to data file '%s': %s", self.data_file, e)

    def close(self) -> None:
        """Closes the data file, if any."""
        if self._dat_file is not None:
            self._dat_file.close()
            self._dat_file = None
