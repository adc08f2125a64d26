"""
perturbations.py
================

Defines the Perturbation class used to shape the request arrival rate of the
simulated application. The workload is a base rate plus:

    • Steps        (extra load between t0 and t1)
    • Ramps        (load growing linearly between t0 and t1, then held)
    • Spikes       (short bursts of extra load)
    • Sine waves   (with activation windows, e.g. diurnal patterns)
    • Gaussian noise

All components sum into a single arrival rate returned by
Perturbation.rate(t), never below zero.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np


@dataclass
class Perturbation:
    base_rate: float = 0.0

    # (t0, t1, magnitude)
    steps: List[Tuple[float, float, float]] = field(default_factory=list)

    # (t0, t1, magnitude reached at t1)
    ramps: List[Tuple[float, float, float]] = field(default_factory=list)

    # (t0, duration, magnitude)
    spikes: List[Tuple[float, float, float]] = field(default_factory=list)

    # (amplitude, period, phase, t_start, t_end)
    sine_waves: List[Tuple[float, float, float, float, float]] = field(default_factory=list)

    # Noise model
    noise_std: float = 0.0
    rng: Optional[np.random.Generator] = None

    def add_step(self, t0: float, t1: float, magnitude: float):
        self.steps.append((t0, t1, magnitude))

    def add_ramp(self, t0: float, t1: float, magnitude: float):
        if t1 <= t0:
            raise ValueError(f"Invalid ramp window [{t0}, {t1}]")
        self.ramps.append((t0, t1, magnitude))

    def add_spike(self, t0: float, duration: float, magnitude: float):
        self.spikes.append((t0, duration, magnitude))

    def add_sine(
        self,
        amplitude: float,
        period: float,
        phase: float = 0.0,
        t_start: float = 0.0,
        t_end: float = float("inf"),
    ):
        if period <= 0:
            raise ValueError(f"Invalid sine period: {period}")
        self.sine_waves.append((amplitude, period, phase, t_start, t_end))

    def add_noise(self, std: float):
        self.noise_std = std

    # ------------------------------------------------------------------
    # Arrival rate at time t (requests/s)
    # ------------------------------------------------------------------
    def rate(self, t: float) -> float:
        lam = self.base_rate

        for t0, t1, mag in self.steps:
            if t0 <= t <= t1:
                lam += mag

        for t0, t1, mag in self.ramps:
            if t >= t1:
                lam += mag
            elif t > t0:
                lam += mag * (t - t0) / (t1 - t0)

        for t0, duration, mag in self.spikes:
            if t0 <= t < t0 + duration:
                lam += mag

        for amp, period, phase, t0, t1 in self.sine_waves:
            if t0 <= t <= t1:
                lam += amp * math.sin(2 * math.pi * t / period + phase)

        if self.noise_std > 0:
            if self.rng is None:
                self.rng = np.random.default_rng()
            lam += self.rng.normal(0.0, self.noise_std)

        return max(0.0, lam)
