"""
Rule selection - picks the single applicable dosing rule for a patient
"""

from typing import List, Optional, Sequence
import logging

from .schema import DosingRule

logger = logging.getLogger(__name__)


class RuleSelector:
    """Filters candidate rules by age/weight/condition and resolves by priority"""

    def matches(
        self,
        rule: DosingRule,
        age_months: int,
        weight_kg: Optional[float] = None,
        has_manual_ampoule: bool = False
    ) -> bool:
        """Check a single rule against the patient context"""
        if rule.age is not None and not rule.age.contains(age_months):
            return False

        # A declared weight window never matches an absent weight
        if rule.weight is not None and not rule.weight.contains(weight_kg):
            return False

        if rule.requires_manual_ampoule and not has_manual_ampoule:
            return False

        return True

    def matching_rules(
        self,
        rules: Sequence[DosingRule],
        age_months: int,
        weight_kg: Optional[float] = None,
        has_manual_ampoule: bool = False
    ) -> List[DosingRule]:
        """
        All applicable rules in resolution order

        Ordered by priority descending; sorted() is stable, so equal
        priorities keep their declaration order.
        """
        candidates = [
            rule for rule in rules
            if self.matches(rule, age_months, weight_kg, has_manual_ampoule)
        ]
        return sorted(candidates, key=lambda rule: rule.priority, reverse=True)

    def select(
        self,
        rules: Sequence[DosingRule],
        age_months: int,
        weight_kg: Optional[float] = None,
        has_manual_ampoule: bool = False
    ) -> Optional[DosingRule]:
        """
        Select the applicable rule

        Args:
            rules: Candidate rules for one route, in declaration order
            age_months: Patient age in whole months
            weight_kg: Patient weight, None when unknown
            has_manual_ampoule: Whether the caller supplied a manual ampoule strength

        Returns:
            The highest-priority matching rule (first declared on ties), or None
        """
        ordered = self.matching_rules(rules, age_months, weight_kg, has_manual_ampoule)
        if not ordered:
            logger.debug(
                f"No rule matched among {len(rules)} candidates "
                f"(age_months={age_months}, weight_kg={weight_kg}, manual={has_manual_ampoule})"
            )
            return None

        selected = ordered[0]
        logger.debug(
            f"Selected rule {selected.id or '<unnamed>'} (priority {selected.priority}) "
            f"from {len(ordered)} matching candidates"
        )
        return selected


_default_selector = RuleSelector()


def select_rule(
    rules: Sequence[DosingRule],
    age_months: int,
    weight_kg: Optional[float] = None,
    has_manual_ampoule: bool = False
) -> Optional[DosingRule]:
    """Module-level shortcut for RuleSelector().select"""
    return _default_selector.select(rules, age_months, weight_kg, has_manual_ampoule)
