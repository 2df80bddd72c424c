"""
Dose calculation - dose (mg), effective concentration (mg/mL) and volume (mL) for a selected rule
"""

import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from typing import Optional, Tuple, Union
import logging

from .schema import (AmpouleStrength, CalcMode, DoseCalc, DoseResult, DosingFailure,
                     DosingRule, EngineConfig)
from .errors import (DosingError, ErrorCode, ErrorLogger, missing_weight_error,
                     invalid_concentration_error)

logger = logging.getLogger(__name__)


def round_to_step(value: float, step: Optional[float]) -> float:
    """
    Round to the nearest multiple of step, ties away from zero (half-up)

    Works on the decimal string form of both operands so that e.g.
    1.37 with step 0.1 gives exactly 1.4. A missing or non-positive
    step returns the value unchanged.
    """
    if step is None or step <= 0 or not math.isfinite(value):
        return value
    with localcontext() as ctx:
        quotient = Decimal(repr(value)) / Decimal(repr(step))
        # quantize needs every integer digit of the quotient in the context precision
        ctx.prec = max(ctx.prec, quotient.adjusted() + 2)
        try:
            steps = quotient.quantize(Decimal(1), rounding=ROUND_HALF_UP)
        except InvalidOperation:
            logger.warning(f"Cannot round {value} to step {step}, leaving it unrounded")
            return value
        return float(steps * Decimal(repr(step)))


def clamp_dose(raw_mg: float, calc: DoseCalc) -> Tuple[float, bool]:
    """Apply minMg then maxMg; report whether the upper bound was binding"""
    dose_mg = raw_mg
    if calc.min_mg is not None:
        dose_mg = max(dose_mg, calc.min_mg)
    capped_by_max = False
    if calc.max_mg is not None:
        capped_by_max = raw_mg > calc.max_mg
        dose_mg = min(dose_mg, calc.max_mg)
    return dose_mg, capped_by_max


class DoseEngine:
    """Deterministic dose/volume calculator for a single dosing rule"""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.error_logger = ErrorLogger(__name__)

    def compute(
        self,
        rule: DosingRule,
        weight_kg: Optional[float],
        stock_ampoule: Optional[AmpouleStrength],
        manual_ampoule: Optional[AmpouleStrength] = None
    ) -> Union[DoseResult, DosingFailure]:
        """
        Calculate dose, concentration and volume for a selected rule

        Args:
            rule: The rule chosen by RuleSelector
            weight_kg: Patient weight, required for per-kg rules
            stock_ampoule: The medication's default ampoule strength
            manual_ampoule: Caller-supplied override; takes precedence over stock

        Returns:
            DoseResult on success, DosingFailure (MISSING_WEIGHT,
            INVALID_CONCENTRATION, UNKNOWN_CALC_MODE) otherwise
        """
        try:
            raw_mg = self.raw_dose_mg(rule, weight_kg)
            dose_mg, capped_by_max = clamp_dose(raw_mg, rule.calc)
            concentration = self.effective_concentration(rule, stock_ampoule, manual_ampoule)
            volume_ml = self._volume_ml(dose_mg, concentration)
        except DosingError as e:
            failure = e.to_failure()
            self.error_logger.log_failure(failure)
            return failure

        if capped_by_max:
            logger.info(
                f"Rule {rule.id or '<unnamed>'}: calculated {raw_mg} mg exceeds maximum, "
                f"capped to {rule.calc.max_mg} mg"
            )

        return DoseResult(
            dose_mg=self._normalize(round_to_step(dose_mg, rule.rounding_mg)),
            concentration_mg_per_ml=self._normalize(concentration),
            volume_ml=self._normalize(round_to_step(volume_ml, rule.rounding_ml)),
            capped_by_max=capped_by_max,
            raw_dose_mg=self._normalize(raw_mg),
            total_volume_ml=rule.total_volume_ml,
            solution_text=rule.dilution.solution_text if rule.dilution else None,
            hint=rule.hint,
            applied_rule_id=rule.id,
            repeats=rule.repeats,
            max_cumulative_mg_per_event=rule.max_cumulative_mg_per_event
        )

    def raw_dose_mg(self, rule: DosingRule, weight_kg: Optional[float]) -> float:
        """Unclamped dose in mg"""
        calc = rule.calc
        if calc.mode == CalcMode.PER_KG:
            if weight_kg is None or not math.isfinite(weight_kg) or weight_kg <= 0:
                raise missing_weight_error(rule.id, weight_kg)
            return calc.mg_per_kg * weight_kg
        if calc.mode == CalcMode.FIXED:
            return calc.fixed_mg
        raise DosingError(
            error_code=ErrorCode.UNKNOWN_CALC_MODE,
            message=f"Unknown calculation mode: {calc.mode!r}",
            details={"rule_id": rule.id, "mode": str(calc.mode)}
        )

    def effective_concentration(
        self,
        rule: DosingRule,
        stock_ampoule: Optional[AmpouleStrength],
        manual_ampoule: Optional[AmpouleStrength] = None
    ) -> float:
        """
        Concentration in mg/mL actually drawn up

        With a dilution target the whole ampoule content is assumed diluted
        to total_volume_ml, so the ampoule's own volume is ignored.
        """
        base = manual_ampoule if manual_ampoule is not None else stock_ampoule
        if base is None:
            raise invalid_concentration_error("no ampoule strength available", rule_id=rule.id)

        total_volume_ml = rule.total_volume_ml
        if total_volume_ml is not None and total_volume_ml > 0:
            concentration = base.mg / total_volume_ml
        else:
            concentration = base.mg_per_ml

        if concentration is None:
            raise invalid_concentration_error(
                "ampoule volume must be greater than 0 mL",
                rule_id=rule.id, mg=base.mg, ml=base.ml, total_volume_ml=total_volume_ml
            )
        if not math.isfinite(concentration) or concentration <= 0 \
                or concentration < self.config.zero_epsilon:
            raise invalid_concentration_error(
                "concentration must be a finite number greater than 0 mg/mL",
                rule_id=rule.id, mg=base.mg, ml=base.ml, total_volume_ml=total_volume_ml
            )
        return concentration

    def _volume_ml(self, dose_mg: float, concentration: float) -> float:
        if concentration <= 0:
            raise invalid_concentration_error("concentration must be greater than 0 mg/mL")
        volume_ml = dose_mg / concentration
        if not math.isfinite(volume_ml):
            raise invalid_concentration_error(
                "volume is not a finite number", dose_mg=dose_mg, concentration=concentration
            )
        return volume_ml

    def _normalize(self, value: float) -> float:
        if abs(value) < self.config.zero_epsilon:
            return 0.0
        return value
