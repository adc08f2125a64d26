"""
Base class for application managers.

An application manager runs a sample/control loop driven by an external
scheduler:

    manager.reset()      # once, after configuration
    manager.sample()     # every sampling interval
    manager.control()    # every control interval

Each step runs the concrete manager's `_do_reset/_do_sample/_do_control` and
then calls the handlers registered for that event, in registration order,
with the manager as the only argument. The manager performs no scheduling of
its own and is not thread-safe: calls must be serialized by the caller.
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from manager.categories import (
    ApplicationPerformanceCategory,
    VirtualMachinePerformanceCategory,
)
from manager.estimators import BaseEstimator
from manager.exceptions import ConfigurationError, InvalidArgumentError
from manager.interfaces import Application
from manager.smoothers import BaseSmoother

manager_log = logging.getLogger("manager")

Handler = Callable[["BaseApplicationManager"], None]


class BaseApplicationManager:
    """
    Generic reset/sample/control lifecycle with event notification.

    Attributes:
        sampling_time (float): Sampling interval in milliseconds (> 0).
        control_time (float): Control interval in milliseconds (> 0).
        app (Application): The managed application (borrowed).
    """

    def __init__(self):
        self._ts = 1.0
        self._tc = 1.0
        self._app: Optional[Application] = None
        self._target_values: Dict[ApplicationPerformanceCategory, float] = {}
        self._app_estimators: Dict[ApplicationPerformanceCategory, BaseEstimator] = {}
        self._app_smoothers: Dict[ApplicationPerformanceCategory, BaseSmoother] = {}
        self._vm_smoothers: Dict[Tuple[VirtualMachinePerformanceCategory, str], BaseSmoother] = {}
        self._reset_handlers: List[Handler] = []
        self._sample_handlers: List[Handler] = []
        self._control_handlers: List[Handler] = []

    # ------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------
    @property
    def sampling_time(self) -> float:
        return self._ts

    @sampling_time.setter
    def sampling_time(self, value: float) -> None:
        if not value > 0:
            raise InvalidArgumentError(f"Invalid sampling time: non-positive value ({value})")
        self._ts = float(value)

    @property
    def control_time(self) -> float:
        return self._tc

    @control_time.setter
    def control_time(self, value: float) -> None:
        if not value > 0:
            raise InvalidArgumentError(f"Invalid control time: non-positive value ({value})")
        self._tc = float(value)

    @property
    def app(self) -> Optional[Application]:
        return self._app

    @app.setter
    def app(self, app: Application) -> None:
        self._app = app

    def set_target_value(self, category: ApplicationPerformanceCategory, value: float) -> None:
        self._target_values[ApplicationPerformanceCategory(category)] = float(value)

    def target_value(self, category: ApplicationPerformanceCategory) -> float:
        if category not in self._target_values:
            raise InvalidArgumentError(f"Invalid category for target value: {category!r}")
        return self._target_values[category]

    def target_metrics(self) -> List[ApplicationPerformanceCategory]:
        """Target categories in category order."""
        return sorted(self._target_values)

    # Application-level estimators / smoothers
    def set_data_estimator(self, category: ApplicationPerformanceCategory, estimator: BaseEstimator) -> None:
        if estimator is None:
            raise InvalidArgumentError("Invalid data estimator: None")
        self._app_estimators[ApplicationPerformanceCategory(category)] = estimator

    def data_estimator(self, category: ApplicationPerformanceCategory) -> BaseEstimator:
        if category not in self._app_estimators:
            raise InvalidArgumentError(f"Invalid category for data estimator: {category!r}")
        return self._app_estimators[category]

    def set_data_smoother(self, category: ApplicationPerformanceCategory, smoother: BaseSmoother) -> None:
        if smoother is None:
            raise InvalidArgumentError("Invalid data smoother: None")
        self._app_smoothers[ApplicationPerformanceCategory(category)] = smoother

    def data_smoother(self, category: ApplicationPerformanceCategory) -> BaseSmoother:
        if category not in self._app_smoothers:
            raise InvalidArgumentError(f"Invalid category for data smoother: {category!r}")
        return self._app_smoothers[category]

    # VM-level smoothers, one per (category, VM id)
    def set_vm_data_smoother(
        self, category: VirtualMachinePerformanceCategory, vm_id: str, smoother: BaseSmoother
    ) -> None:
        if smoother is None:
            raise InvalidArgumentError("Invalid data smoother: None")
        self._vm_smoothers[(VirtualMachinePerformanceCategory(category), vm_id)] = smoother

    def vm_data_smoother(self, category: VirtualMachinePerformanceCategory, vm_id: str) -> BaseSmoother:
        key = (category, vm_id)
        if key not in self._vm_smoothers:
            raise InvalidArgumentError(f"Invalid category for data smoother: {category!r} (VM '{vm_id}')")
        return self._vm_smoothers[key]

    def clear_vm_data(self) -> None:
        self._vm_smoothers.clear()

    # ------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------
    def add_on_reset_handler(self, handler: Handler) -> None:
        self._reset_handlers.append(handler)

    def add_on_sample_handler(self, handler: Handler) -> None:
        self._sample_handlers.append(handler)

    def add_on_control_handler(self, handler: Handler) -> None:
        self._control_handlers.append(handler)

    def _notify(self, handlers: List[Handler]) -> None:
        for handler in handlers:
            handler(self)

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------
    def reset(self) -> None:
        """
        Rebinds sensors and clears all numeric state.

        Raises:
            ConfigurationError: If no application is bound, or the concrete
                manager cannot set up its resources.
        """
        if self._app is None:
            raise ConfigurationError("Application is not set")
        manager_log.info("Resetting %s.", type(self).__name__)
        self._do_reset()
        self._notify(self._reset_handlers)

    def sample(self) -> None:
        self._do_sample()
        self._notify(self._sample_handlers)

    def control(self) -> None:
        self._do_control()
        self._notify(self._control_handlers)

    def close(self) -> None:
        """Releases resources held by the manager (no-op by default)."""

    def _do_reset(self) -> None:
        raise NotImplementedError

    def _do_sample(self) -> None:
        raise NotImplementedError

    def _do_control(self) -> None:
        raise NotImplementedError
