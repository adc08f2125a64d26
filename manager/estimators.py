"""
Data estimators: reduce a stream of scalar observations to one summary value.

Estimators are stateful accumulators. Observations are added with
`collect()`, the summary is read with `estimate()`, and `reset()` drops
everything collected so far. `estimate()` is only meaningful once `count()`
is positive; before that it returns NaN.
"""

import logging
import math
import numbers
from typing import Iterable, List, Union

from manager.exceptions import ConfigurationError, InvalidArgumentError

estimators_log = logging.getLogger("estimators")


class BaseEstimator:
    """Common collect/estimate/reset protocol."""

    def __init__(self):
        self._count = 0

    def collect(self, data: Union[float, Iterable[float]]) -> None:
        if isinstance(data, numbers.Real):
            values = [float(data)]
        else:
            values = [float(v) for v in data]
        for value in values:
            self._count += 1
            self._collect(value)

    def count(self) -> int:
        return self._count

    def estimate(self) -> float:
        if self._count == 0:
            return math.nan
        return self._estimate()

    def reset(self) -> None:
        self._count = 0
        self._reset()

    def _collect(self, value: float) -> None:
        raise NotImplementedError

    def _estimate(self) -> float:
        raise NotImplementedError

    def _reset(self) -> None:
        raise NotImplementedError


class MeanEstimator(BaseEstimator):
    """Running arithmetic mean."""

    def __init__(self):
        super().__init__()
        self._mean = 0.0

    def _collect(self, value):
        self._mean += (value - self._mean) / self._count

    def _estimate(self):
        return self._mean

    def _reset(self):
        self._mean = 0.0


class P2QuantileEstimator(BaseEstimator):
    """
    Streaming quantile estimator based on the P² algorithm.

    Five markers track the minimum, the p/2, p and (1+p)/2 quantiles and the
    maximum. Marker heights are adjusted with a piecewise-parabolic formula
    (falling back to linear interpolation) whenever a marker drifts at least
    one position away from its desired position, so memory stays constant
    regardless of the stream length.

    Reference:
        R. Jain and I. Chlamtac, "The P² algorithm for dynamic calculation of
        quantiles and histograms without storing observations,"
        Communications of the ACM 28(10), 1985.
    """

    NUM_MARKERS = 5

    def __init__(self, probability: float):
        super().__init__()
        if not 0.0 < probability < 1.0:
            raise InvalidArgumentError(f"Invalid quantile probability: {probability} (must be in (0, 1))")
        self.probability = float(probability)
        p = self.probability
        self._increments = [0.0, p / 2.0, p, (1.0 + p) / 2.0, 1.0]
        self._reset()

    def _reset(self):
        p = self.probability
        self._heights: List[float] = []
        self._positions = [1, 2, 3, 4, 5]
        self._desired = [1.0, 1.0 + 2.0 * p, 1.0 + 4.0 * p, 3.0 + 2.0 * p, 5.0]

    def _collect(self, x):
        q = self._heights
        if self._count <= self.NUM_MARKERS:
            q.append(x)
            if self._count == self.NUM_MARKERS:
                q.sort()
            return

        n = self._positions
        # Find the cell k such that q[k] <= x < q[k+1], extending the extremes.
        if x < q[0]:
            q[0] = x
            k = 0
        elif x >= q[4]:
            q[4] = x
            k = 3
        else:
            k = 0
            while x >= q[k + 1]:
                k += 1

        for i in range(k + 1, self.NUM_MARKERS):
            n[i] += 1
        for i in range(self.NUM_MARKERS):
            self._desired[i] += self._increments[i]

        for i in (1, 2, 3):
            d = self._desired[i] - n[i]
            if (d >= 1.0 and n[i + 1] - n[i] > 1) or (d <= -1.0 and n[i - 1] - n[i] < -1):
                step = 1 if d > 0 else -1
                candidate = self._parabolic(i, step)
                if q[i - 1] < candidate < q[i + 1]:
                    q[i] = candidate
                else:
                    q[i] = self._linear(i, step)
                n[i] += step

    def _parabolic(self, i, d):
        q, n = self._heights, self._positions
        return q[i] + d / (n[i + 1] - n[i - 1]) * (
            (n[i] - n[i - 1] + d) * (q[i + 1] - q[i]) / (n[i + 1] - n[i])
            + (n[i + 1] - n[i] - d) * (q[i] - q[i - 1]) / (n[i] - n[i - 1])
        )

    def _linear(self, i, d):
        q, n = self._heights, self._positions
        return q[i] + d * (q[i + d] - q[i]) / (n[i + d] - n[i])

    def _estimate(self):
        if self._count >= self.NUM_MARKERS:
            return self._heights[2]
        # Not enough samples for the markers yet: interpolated sample quantile.
        data = sorted(self._heights)
        pos = self.probability * (len(data) - 1)
        lo = int(math.floor(pos))
        hi = min(lo + 1, len(data) - 1)
        return data[lo] + (pos - lo) * (data[hi] - data[lo])

    def marker_heights(self) -> List[float]:
        return list(self._heights)


ESTIMATOR_NAMES = ("mean", "jain1985_p2_algorithm_quantile")


def make_estimator(name: str, **params) -> BaseEstimator:
    """
    Builds an estimator from its configuration name.

    Args:
        name (str): 'mean' or 'jain1985_p2_algorithm_quantile'.
        **params: 'quantile_prob' for the quantile estimator (default 0.99).

    Raises:
        ConfigurationError: If the name is unknown.
    """
    key = name.strip().lower()
    if key == "mean":
        estimator = MeanEstimator()
    elif key == "jain1985_p2_algorithm_quantile":
        estimator = P2QuantileEstimator(float(params.get("quantile_prob", 0.99)))
    else:
        raise ConfigurationError(f"Unknown data estimator category: {name}")
    estimators_log.debug("Created %s estimator (%s).", key, type(estimator).__name__)
    return estimator
