"""
Computes the final crisp output from the activated fuzzy rule consequents.

This module implements the defuzzification process for a Mamdani-type system.
Each activated consequent term is scaled by its activation degree (algebraic
product), the scaled sets of one output variable are accumulated with the
algebraic sum, and the crisp value is the centroid of the accumulated set.
"""

import logging
import math
from typing import List, Tuple

from flc.fuzzifier import Variable

defuzzifier_log = logging.getLogger("defuzzifier")

DEFAULT_RESOLUTION = 200


def algebraic_sum(a: float, b: float) -> float:
    return a + b - a * b


class Defuzzifier:
    """Performs centroid defuzzification of an accumulated output set."""

    def __init__(self, resolution: int = DEFAULT_RESOLUTION):
        """
        Initializes the Defuzzifier.

        Args:
            resolution (int): Number of midpoint samples used to integrate
                the accumulated set over the output range.
        """
        if resolution < 1:
            raise ValueError(f"Invalid centroid resolution: {resolution}")
        self.resolution = int(resolution)
        defuzzifier_log.info("Defuzzifier initialized (centroid, resolution=%d).", self.resolution)

    @staticmethod
    def accumulated_membership(
        variable: Variable, activations: List[Tuple[str, float]], x: float
    ) -> float:
        """Membership of x in the algebraic-sum accumulation of the activated terms."""
        result = 0.0
        for term_name, degree in activations:
            result = algebraic_sum(result, degree * variable.term(term_name).membership(x))
        return result

    def defuzzify(self, variable: Variable, activations: List[Tuple[str, float]]) -> float:
        """
        Calculates the final crisp output value.

        The output is the centroid of the accumulated set over the variable
        range, integrated at the midpoints of `resolution` equal slices:

            x_i = min + (i + 0.5) * dx
            output = Σ(mu(x_i) * x_i) / Σ mu(x_i)

        Args:
            variable (Variable): The output variable (range and terms).
            activations (List[Tuple[str, float]]): (term name, activation
                degree) pairs from the RuleEngine.

        Returns:
            float: The crisp output. NaN if no rule was activated or the
                accumulated set has zero area.
        """
        if not activations:
            defuzzifier_log.warning("No active rules for '%s'. Outputting NaN.", variable.name)
            return math.nan

        dx = (variable.maximum - variable.minimum) / self.resolution
        area = 0.0
        xcentroid = 0.0
        for i in range(self.resolution):
            x = variable.minimum + (i + 0.5) * dx
            y = self.accumulated_membership(variable, activations, x)
            area += y
            xcentroid += y * x

        if area == 0:
            defuzzifier_log.warning("Accumulated set for '%s' has zero area. Outputting NaN.", variable.name)
            return math.nan

        final_output = xcentroid / area
        defuzzifier_log.debug(
            "Defuzzified %s: %.4f (from %d activated terms)",
            variable.name,
            final_output,
            len(activations),
        )
        return final_output
