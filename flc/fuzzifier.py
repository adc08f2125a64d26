"""
Fuzzifies crisp input values into fuzzy sets using ramp, triangular and
trapezoidal membership functions.

This module defines the linguistic terms and variables used by the fuzzy
engine and determines the degree of membership of a crisp value across the
terms of a variable (e.g. the CPU residual 'Cres' being 'NEG', 'OK' or 'POS').
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

fuzzifier_log = logging.getLogger("fuzzifier")


def _ramp(x: float, params: Tuple[float, ...]) -> float:
    """
    Calculates the membership degree for a ramp function.

    Args:
        x (float): The crisp input value.
        params (Tuple[float, ...]): A pair (start, end). The ramp is ascending
            when start < end and descending when start > end. Membership is 0
            on the 'start' side and 1 on the 'end' side.

    Returns:
        float: The degree of membership, from 0.0 to 1.0 (NaN for NaN input).
    """
    start, end = params
    if math.isnan(x):
        return math.nan
    if start == end:
        return 0.0
    if start < end:
        if x <= start:
            return 0.0
        if x >= end:
            return 1.0
        return (x - start) / (end - start)
    if x >= start:
        return 0.0
    if x <= end:
        return 1.0
    return (start - x) / (start - end)


def _triangle(x: float, params: Tuple[float, ...]) -> float:
    """
    Calculates the membership degree for a triangular function.

    Args:
        x (float): The crisp input value.
        params (Tuple[float, ...]): A triple (a, b, c) where 'a' is the left
            foot, 'b' is the peak, and 'c' is the right foot of the triangle.

    Returns:
        float: The degree of membership, from 0.0 to 1.0 (NaN for NaN input).
    """
    a, b, c = params
    if math.isnan(x):
        return math.nan
    if x < a or x > c:
        return 0.0
    if x == b:
        return 1.0
    # left half rt triangle
    if x < b:
        return (x - a) / (b - a)
    # right half rt triangle
    return (c - x) / (c - b)


def _trapezoid(x: float, params: Tuple[float, ...]) -> float:
    """
    Calculates the membership degree for a trapezoidal function.

    Args:
        x (float): The crisp input value.
        params (Tuple[float, ...]): (a, b, c, d) where 'a' and 'd' are the
            bases (zero membership) and 'b' to 'c' is the top (membership 1.0).

    Returns:
        float: Degree of membership (0.0 to 1.0, NaN for NaN input).
    """
    a, b, c, d = params
    if math.isnan(x):
        return math.nan
    if x < a or x > d:
        return 0.0
    if b <= x <= c:
        return 1.0
    if x < b:
        return (x - a) / (b - a)
    return (d - x) / (d - c)


_SHAPES = {
    "ramp": (_ramp, 2),
    "triangle": (_triangle, 3),
    "trapezoid": (_trapezoid, 4),
}


@dataclass(frozen=True)
class Term:
    """A named membership function of a linguistic variable."""

    name: str
    shape: str
    params: Tuple[float, ...]

    def __post_init__(self):
        if self.shape not in _SHAPES:
            raise ValueError(f"Unknown membership function shape '{self.shape}' for '{self.name}'")
        _, arity = _SHAPES[self.shape]
        if len(self.params) != arity:
            raise ValueError(
                f"Invalid membership function shape for '{self.name}': {self.shape}{list(self.params)}"
            )
        if self.shape == "triangle":
            a, b, c = self.params
            if not a <= b <= c or a == c:
                raise ValueError(f"Invalid triangle params [{a}, {b}, {c}]")
        elif self.shape == "trapezoid":
            a, b, c, d = self.params
            if not (a <= b <= c <= d) or a == d:
                raise ValueError(f"Invalid trapezoid params [{a}, {b}, {c}, {d}]")
        # frozen dataclass: normalise params to floats
        object.__setattr__(self, "params", tuple(float(p) for p in self.params))

    def membership(self, x: float) -> float:
        func, _ = _SHAPES[self.shape]
        return func(x, self.params)


def ramp(name: str, start: float, end: float) -> Term:
    return Term(name, "ramp", (start, end))


def triangle(name: str, a: float, b: float, c: float) -> Term:
    return Term(name, "triangle", (a, b, c))


def trapezoid(name: str, a: float, b: float, c: float, d: float) -> Term:
    return Term(name, "trapezoid", (a, b, c, d))


@dataclass
class Variable:
    """
    A linguistic variable: a name, a crisp range and an ordered set of terms.

    Attributes:
        name (str): Variable name used by the rules (e.g. 'Cres').
        minimum (float): Lower bound of the variable range.
        maximum (float): Upper bound of the variable range.
        terms (List[Term]): The membership functions, in declaration order.
    """

    name: str
    minimum: float
    maximum: float
    terms: List[Term] = field(default_factory=list)

    def __post_init__(self):
        if not self.minimum < self.maximum:
            raise ValueError(
                f"Invalid range [{self.minimum}, {self.maximum}] for variable '{self.name}'"
            )
        names = [t.name for t in self.terms]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate term names for variable '{self.name}': {names}")

    def term(self, name: str) -> Term:
        for t in self.terms:
            if t.name == name:
                return t
        raise KeyError(f"Variable '{self.name}' has no term '{name}'")

    def has_term(self, name: str) -> bool:
        return any(t.name == name for t in self.terms)


class Fuzzifier:
    """
    Calculates membership degrees for crisp inputs.

    Attributes:
        variables (Dict[str, Variable]): The input variables, by name.
    """

    def __init__(self, variables: List[Variable]) -> None:
        self.variables: Dict[str, Variable] = {v.name: v for v in variables}
        fuzzifier_log.info(
            "Fuzzifier initialized with %d input variables (%s).",
            len(self.variables),
            ", ".join(self.variables),
        )

    def fuzzify(self, input_name: str, crisp_value: float) -> Dict[str, float]:
        """
        Fuzzifies a single crisp input value.

        Args:
            input_name (str): The name of the input variable.
            crisp_value (float): The crisp value to fuzzify. Values outside the
                variable range are not clipped.

        Returns:
            Dict[str, float]: A dictionary mapping each term name to its
                membership degree. Only terms with a degree > 0 are included.

        Raises:
            KeyError: If the variable is unknown.
            ValueError: If the crisp value is not finite.
        """
        if input_name not in self.variables:
            raise KeyError(f"No membership functions defined for input '{input_name}'")
        if not math.isfinite(crisp_value):
            raise ValueError(f"Non-finite value {crisp_value} for input '{input_name}'")

        fuzzified_output = {}
        for term in self.variables[input_name].terms:
            degree = term.membership(crisp_value)
            if degree > 0:
                fuzzified_output[term.name] = degree

        fuzzifier_log.debug(
            "Fuzzified %s=  %.3f -> %s",
            input_name,
            crisp_value,
            {k: f"{v:.3f}" for k, v in fuzzified_output.items()},
        )
        return fuzzified_output
