"""
Data smoothers: stateful forecasters over a stream of scalar observations.

`smooth(x)` ingests one observation, `forecast(h)` predicts the value `h`
steps ahead without consuming data, `reset()` returns to the unseeded state.
Before the first observation every forecast is NaN.
"""

import logging
import math

from manager.exceptions import ConfigurationError, InvalidArgumentError

smoothers_log = logging.getLogger("smoothers")


def _check_factor(name: str, value: float, allow_zero: bool = False) -> float:
    value = float(value)
    low_ok = value >= 0.0 if allow_zero else value > 0.0
    if not (low_ok and value <= 1.0):
        bounds = "[0, 1]" if allow_zero else "(0, 1]"
        raise InvalidArgumentError(f"Invalid smoothing factor {name}={value} (must be in {bounds})")
    return value


class BaseSmoother:
    """Common smooth/forecast/reset protocol."""

    def __init__(self):
        self._count = 0

    def smooth(self, value: float) -> float:
        """Feeds one observation and returns the smoothed level."""
        value = float(value)
        if self._count == 0:
            self._seed(value)
        else:
            self._update(value)
        self._count += 1
        return self.forecast(0)

    def count(self) -> int:
        return self._count

    def forecast(self, horizon: int = 0) -> float:
        if self._count == 0:
            return math.nan
        return self._forecast(horizon)

    def reset(self) -> None:
        self._count = 0
        self._reset()

    def _seed(self, value: float) -> None:
        raise NotImplementedError

    def _update(self, value: float) -> None:
        raise NotImplementedError

    def _forecast(self, horizon: int) -> float:
        raise NotImplementedError

    def _reset(self) -> None:
        pass


class DummySmoother(BaseSmoother):
    """No smoothing: the forecast is the last observation."""

    def __init__(self):
        super().__init__()
        self._last = math.nan

    def _seed(self, value):
        self._last = value

    def _update(self, value):
        self._last = value

    def _forecast(self, horizon):
        return self._last

    def _reset(self):
        self._last = math.nan


class BrownSingleExponentialSmoother(BaseSmoother):
    """
    Brown's single exponential smoothing.

        S_0 = x_0
        S_t = alpha * x_t + (1 - alpha) * S_{t-1}

    There is no trend component, so forecast(h) = S_t for every h.
    """

    def __init__(self, alpha: float):
        super().__init__()
        self.alpha = _check_factor("alpha", alpha)
        self._level = math.nan

    def _seed(self, value):
        self._level = value

    def _update(self, value):
        self._level = self.alpha * value + (1.0 - self.alpha) * self._level

    def _forecast(self, horizon):
        return self._level

    def _reset(self):
        self._level = math.nan


class BrownDoubleExponentialSmoother(BaseSmoother):
    """
    Brown's linear (double) exponential smoothing.

        S'_t  = alpha * x_t  + (1 - alpha) * S'_{t-1}
        S''_t = alpha * S'_t + (1 - alpha) * S''_{t-1}
        a_t = 2 S'_t - S''_t
        b_t = alpha / (1 - alpha) * (S'_t - S''_t)
        forecast(h) = a_t + h * b_t

    Both stages are seeded with the first observation.
    """

    def __init__(self, alpha: float):
        super().__init__()
        self.alpha = _check_factor("alpha", alpha)
        if self.alpha == 1.0:
            raise InvalidArgumentError("Invalid smoothing factor alpha=1.0 for double exponential smoothing")
        self._s1 = math.nan
        self._s2 = math.nan

    def _seed(self, value):
        self._s1 = value
        self._s2 = value

    def _update(self, value):
        a = self.alpha
        self._s1 = a * value + (1.0 - a) * self._s1
        self._s2 = a * self._s1 + (1.0 - a) * self._s2

    def _forecast(self, horizon):
        level = 2.0 * self._s1 - self._s2
        trend = self.alpha / (1.0 - self.alpha) * (self._s1 - self._s2)
        return level + horizon * trend

    def _reset(self):
        self._s1 = math.nan
        self._s2 = math.nan


class HoltWintersDoubleExponentialSmoother(BaseSmoother):
    """
    Holt-Winters double exponential smoothing (level and trend, no season).

        L_t = alpha * x_t + (1 - alpha) * (L_{t-1} + T_{t-1})
        T_t = beta * (L_t - L_{t-1}) + (1 - beta) * T_{t-1}
        forecast(h) = L_t + h * T_t

    Seeded with L_0 = x_0 and T_0 = 0.
    """

    def __init__(self, alpha: float, beta: float):
        super().__init__()
        self.alpha = _check_factor("alpha", alpha)
        self.beta = _check_factor("beta", beta, allow_zero=True)
        self._level = math.nan
        self._trend = math.nan

    @classmethod
    def from_discount(cls, delta: float) -> "HoltWintersDoubleExponentialSmoother":
        """
        Builds the smoother equivalent to Brown's double exponential
        smoothing with discount factor delta (alpha = 1 - delta^2,
        beta = (1 - delta) / (1 + delta)).
        """
        delta = float(delta)
        if not 0.0 < delta < 1.0:
            raise InvalidArgumentError(f"Invalid discount factor delta={delta} (must be in (0, 1))")
        return cls(1.0 - delta * delta, (1.0 - delta) / (1.0 + delta))

    def _seed(self, value):
        self._level = value
        self._trend = 0.0

    def _update(self, value):
        prev_level = self._level
        self._level = self.alpha * value + (1.0 - self.alpha) * (prev_level + self._trend)
        self._trend = self.beta * (self._level - prev_level) + (1.0 - self.beta) * self._trend

    def _forecast(self, horizon):
        return self._level + horizon * self._trend

    def _reset(self):
        self._level = math.nan
        self._trend = math.nan


SMOOTHER_NAMES = ("dummy", "brown_ses", "brown_des", "holt_winters_des")


def make_smoother(name: str, **params) -> BaseSmoother:
    """
    Builds a smoother from its configuration name.

    Args:
        name (str): 'dummy', 'brown_ses', 'brown_des' or 'holt_winters_des'.
        **params: 'alpha' for the Brown smoothers (default 0.7); 'delta', or
            'alpha' and 'beta', for Holt-Winters (defaults 0.8 / 0.3; a
            positive 'delta' takes precedence).

    Raises:
        ConfigurationError: If the name is unknown.
    """
    key = name.strip().lower()
    if key == "dummy":
        smoother = DummySmoother()
    elif key == "brown_ses":
        smoother = BrownSingleExponentialSmoother(float(params.get("alpha", 0.7)))
    elif key == "brown_des":
        smoother = BrownDoubleExponentialSmoother(float(params.get("alpha", 0.7)))
    elif key == "holt_winters_des":
        delta = float(params.get("delta", 0.0))
        if delta > 0:
            smoother = HoltWintersDoubleExponentialSmoother.from_discount(delta)
        else:
            smoother = HoltWintersDoubleExponentialSmoother(
                float(params.get("alpha", 0.8)), float(params.get("beta", 0.3))
            )
    else:
        raise ConfigurationError(f"Unknown data smoother category: {name}")
    smoothers_log.debug("Created %s smoother (%s).", key, type(smoother).__name__)
    return smoother
