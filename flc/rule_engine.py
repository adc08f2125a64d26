"""
Evaluates the fuzzy rule base to determine rule activation.

This module parses Mamdani-type rules of the form

    if Cres is NEG and E is LOW then DeltaC is BUP [with 1.0]

and, given the fuzzified inputs (membership degrees), computes for each rule
its activation degree: the antecedent truth value (conjunction = minimum,
disjunction = maximum, evaluated left to right) multiplied by the rule weight.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Tuple

rule_engine_log = logging.getLogger("rule_engine")
WZ_log = logging.getLogger("WZ_engine")

_CONNECTIVES = ("and", "or")


@dataclass(frozen=True)
class Proposition:
    variable: str
    term: str


@dataclass(frozen=True)
class Rule:
    """
    A single fuzzy rule.

    Attributes:
        antecedent (Tuple[Proposition, ...]): The 'IF' propositions.
        connectives (Tuple[str, ...]): 'and'/'or' joining consecutive
            propositions (one fewer than the propositions).
        consequent (Tuple[Proposition, ...]): The 'THEN' propositions.
        weight (float): Rule weight in [0, 1].
    """

    antecedent: Tuple[Proposition, ...]
    connectives: Tuple[str, ...]
    consequent: Tuple[Proposition, ...]
    weight: float = 1.0

    @classmethod
    def parse(cls, text: str) -> "Rule":
        """
        Parses a rule written as 'if <var> is <term> [and|or ...] then
        <var> is <term> [and ...] [with <weight>]'.

        Raises:
            ValueError: If the text is not a well-formed rule.
        """
        tokens = text.split()
        if not tokens or tokens[0].lower() != "if":
            raise ValueError(f"Rule must start with 'if': '{text}'")
        lowered = [t.lower() for t in tokens]
        if "then" not in lowered:
            raise ValueError(f"Rule has no 'then' clause: '{text}'")
        then_at = lowered.index("then")

        weight = 1.0
        end = len(tokens)
        if "with" in lowered[then_at:]:
            with_at = then_at + lowered[then_at:].index("with")
            if with_at != len(tokens) - 2:
                raise ValueError(f"Malformed weight in rule: '{text}'")
            weight = float(tokens[-1])
            if not 0.0 <= weight <= 1.0:
                raise ValueError(f"Rule weight {weight} outside [0, 1]: '{text}'")
            end = with_at

        antecedent, connectives = cls._parse_propositions(tokens[1:then_at], text, _CONNECTIVES)
        consequent, _ = cls._parse_propositions(tokens[then_at + 1:end], text, ("and",))
        return cls(tuple(antecedent), tuple(connectives), tuple(consequent), weight)

    @staticmethod
    def _parse_propositions(tokens, text, allowed):
        props, connectives = [], []
        i = 0
        while True:
            if len(tokens) < i + 3 or tokens[i + 1].lower() != "is":
                raise ValueError(f"Expected '<variable> is <term>' in rule: '{text}'")
            props.append(Proposition(tokens[i], tokens[i + 2]))
            i += 3
            if i == len(tokens):
                return props, connectives
            conn = tokens[i].lower()
            if conn not in allowed:
                raise ValueError(f"Unexpected '{tokens[i]}' in rule: '{text}'")
            connectives.append(conn)
            i += 1

    def __str__(self):
        parts = [f"{self.antecedent[0].variable} is {self.antecedent[0].term}"]
        for conn, prop in zip(self.connectives, self.antecedent[1:]):
            parts.append(f"{conn} {prop.variable} is {prop.term}")
        then = " and ".join(f"{p.variable} is {p.term}" for p in self.consequent)
        text = f"if {' '.join(parts)} then {then}"
        if self.weight != 1.0:
            text += f" with {self.weight:g}"
        return text


class RuleEngine:
    """
    Evaluates a Mamdani-type fuzzy rule base.

    Attributes:
        rules (List[Rule]): The rule definitions, in evaluation order.
    """

    def __init__(self, rules: List[Rule]):
        self.rules = list(rules)
        rule_engine_log.info("Rule Engine initialized with %d rules.", len(self.rules))
        rule_engine_log.info("W is the rule activation degree (antecedent truth * weight).")

    def evaluate(
        self, fuzzified: Dict[str, Dict[str, float]]
    ) -> Dict[str, List[Tuple[str, float]]]:
        """
        Evaluates all rules in the rule base.

        For each rule the antecedent truth value is computed by folding its
        propositions left to right with min (and) / max (or). The activation
        degree W is that truth value times the rule weight. Rules with W == 0
        do not contribute.

        Args:
            fuzzified (Dict[str, Dict[str, float]]): For each input variable,
                the membership degree of each of its terms. Missing terms have
                degree 0.

        Returns:
            Dict[str, List[Tuple[str, float]]]: For each output variable, the
            (term, W) pairs of the activated consequents, in rule order.
        """
        activations: Dict[str, List[Tuple[str, float]]] = {}

        for i, rule in enumerate(self.rules):
            first = rule.antecedent[0]
            truth = fuzzified.get(first.variable, {}).get(first.term, 0.0)
            for conn, prop in zip(rule.connectives, rule.antecedent[1:]):
                degree = fuzzified.get(prop.variable, {}).get(prop.term, 0.0)
                truth = min(truth, degree) if conn == "and" else max(truth, degree)

            w = truth * rule.weight
            if w > 0:
                for prop in rule.consequent:
                    activations.setdefault(prop.variable, []).append((prop.term, w))
                WZ_log.debug("Rule# %d (%s) W= %.3f", i, rule, w)
            else:
                WZ_log.debug("Rule# %d W= %.3f", i, w)

        return activations
# End of rule_engine.py
