"""
Orchestrates the fuzzy inference operations.

This module integrates the Fuzzifier, Rule Engine, and Defuzzifier behind a
small engine interface: set crisp input values, process, read crisp output
values. Variables and rules are fixed once the engine is built; only the
input/output value buffers change between inferences.
"""

import logging
import math
from typing import Dict, Iterable, List, Union

from flc.defuzzifier import DEFAULT_RESOLUTION, Defuzzifier
from flc.fuzzifier import Fuzzifier, Variable
from flc.rule_engine import Rule, RuleEngine

engine_log = logging.getLogger("engine")


class InferenceError(ValueError):
    """Raised when the engine cannot perform an inference."""


class FuzzyEngine:
    """
    A Mamdani fuzzy inference engine.

    Attributes:
        fuzzifier (Fuzzifier): The fuzzifier over the input variables.
        rule_engine (RuleEngine): The rule engine instance.
        defuzzifier (Defuzzifier): The centroid defuzzifier.
    """

    def __init__(
        self,
        inputs: List[Variable],
        outputs: List[Variable],
        rules: Iterable[Union[Rule, str]],
        resolution: int = DEFAULT_RESOLUTION,
    ):
        """
        Builds the engine and validates the rules against the variables.

        Args:
            inputs (List[Variable]): Input variables.
            outputs (List[Variable]): Output variables.
            rules (Iterable[Union[Rule, str]]): Rules, parsed if given as text.
            resolution (int): Centroid integration resolution.

        Raises:
            ValueError: If a rule refers to an unknown variable or term.
        """
        self.inputs: Dict[str, Variable] = {v.name: v for v in inputs}
        self.outputs: Dict[str, Variable] = {v.name: v for v in outputs}
        parsed = [r if isinstance(r, Rule) else Rule.parse(r) for r in rules]
        for rule in parsed:
            self._check_rule(rule)

        self.fuzzifier = Fuzzifier(inputs)
        self.rule_engine = RuleEngine(parsed)
        self.defuzzifier = Defuzzifier(resolution)

        self._input_values: Dict[str, float] = {}
        self._output_values: Dict[str, float] = {}
        self.restart()
        engine_log.info(
            "Fuzzy engine initialized: %d inputs, %d outputs, %d rules.",
            len(self.inputs),
            len(self.outputs),
            len(parsed),
        )

    def _check_rule(self, rule: Rule) -> None:
        for prop in rule.antecedent:
            var = self.inputs.get(prop.variable)
            if var is None or not var.has_term(prop.term):
                raise ValueError(f"Unknown antecedent '{prop.variable} is {prop.term}' in rule '{rule}'")
        for prop in rule.consequent:
            var = self.outputs.get(prop.variable)
            if var is None or not var.has_term(prop.term):
                raise ValueError(f"Unknown consequent '{prop.variable} is {prop.term}' in rule '{rule}'")

    def restart(self) -> None:
        """Clears every input and output value."""
        self._input_values = {name: math.nan for name in self.inputs}
        self._output_values = {name: math.nan for name in self.outputs}

    def set_input_value(self, name: str, value: float) -> None:
        if name not in self.inputs:
            raise InferenceError(f"Unknown input variable '{name}'")
        self._input_values[name] = float(value)

    def input_value(self, name: str) -> float:
        if name not in self.inputs:
            raise InferenceError(f"Unknown input variable '{name}'")
        return self._input_values[name]

    def output_value(self, name: str) -> float:
        if name not in self.outputs:
            raise InferenceError(f"Unknown output variable '{name}'")
        return self._output_values[name]

    def process(self) -> None:
        """
        Executes one full inference over the current input values.

        Output variables whose rules did not fire take the default value NaN.

        Raises:
            InferenceError: If an input value is missing or not finite.
        """
        fuzzified = {}
        for name in self.inputs:
            value = self._input_values[name]
            if not math.isfinite(value):
                raise InferenceError(f"Input variable '{name}' has non-finite value {value}")
            fuzzified[name] = self.fuzzifier.fuzzify(name, value)

        activations = self.rule_engine.evaluate(fuzzified)

        for name, variable in self.outputs.items():
            self._output_values[name] = self.defuzzifier.defuzzify(variable, activations.get(name, []))

        engine_log.debug(
            "Inference: inputs=%s -> outputs=%s",
            {k: round(v, 4) for k, v in self._input_values.items()},
            {k: round(v, 4) for k, v in self._output_values.items()},
        )
