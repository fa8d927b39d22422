import re
from collections.abc import Iterable
from dataclasses import dataclass

from .errors import UsageError
from .models import RuleEffect

RULE_PREFIXES: dict[str, RuleEffect] = {effect.value: effect for effect in RuleEffect}


@dataclass(frozen=True, slots=True)
class Rule:
    effect: RuleEffect
    pattern: re.Pattern[str]

    @staticmethod
    def parse(definition: str) -> "Rule":
        """
        Build a rule from a line such as ``+\\.txt$``, ``-^tmp/`` or ``!^\\.git$``.

        The first character selects the effect and the remainder is a regular
        expression searched against item paths, which start with the source's
        base name (`docs/a/b.txt` for source `/home/u/docs`).
        """
        if len(definition) < 2:
            raise UsageError(f"Rule is too short: {definition!r}")

        effect: RuleEffect | None = RULE_PREFIXES.get(definition[0])
        if effect is None:
            raise UsageError(f"Rule must start with '+', '-' or '!': {definition!r}")

        try:
            pattern: re.Pattern[str] = re.compile(definition[1:])
        except re.error as e:
            raise UsageError(f"Invalid regular expression in rule {definition!r}: {e}")

        return Rule(effect=effect, pattern=pattern)


class RuleSet:
    def __init__(self, rules: Iterable[Rule] = ()) -> None:
        self.rules: list[Rule] = list(rules)

    @staticmethod
    def parse(definitions: Iterable[str]) -> "RuleSet":
        return RuleSet(Rule.parse(definition) for definition in definitions)

    def add(self, rule: Rule) -> None:
        self.rules.append(rule)

    def __len__(self) -> int:
        return len(self.rules)

    def evaluate(self, path: str, inherited_allowed: bool) -> RuleEffect:
        """
        Decide whether `path` is allowed, denied or pruned.

        Starts from the inherited default and applies every matching rule in
        declaration order, so the last match wins.
        """
        effect: RuleEffect = RuleEffect.ALLOW if inherited_allowed else RuleEffect.DENY

        for rule in self.rules:
            if rule.pattern.search(path):
                effect = rule.effect

        return effect
