#!/usr/bin/env python3
"""
Unit tests for dose, concentration and volume calculation
"""

import pytest
from pathlib import Path
import sys

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from dosing_engine.schema import (AmpouleStrength, CalcMode, Dilution, DoseCalc, DoseResult,
                                  DosingFailure, DosingRule, Rounding)
from dosing_engine.calculator import DoseEngine, clamp_dose, round_to_step
from dosing_engine.errors import ErrorCode, ErrorCategory

STOCK = AmpouleStrength(mg=1.0, ml=1.0)


def per_kg(mg_per_kg, **kwargs):
    return DoseCalc(mode=CalcMode.PER_KG, mg_per_kg=mg_per_kg, **kwargs)


def fixed(mg, **kwargs):
    return DoseCalc(mode=CalcMode.FIXED, fixed_mg=mg, **kwargs)


class TestDoseEngine:
    """Test the calculation steps of DoseEngine.compute"""

    def setup_method(self):
        self.engine = DoseEngine()

    def test_per_kg_dose(self):
        rule = DosingRule(calc=per_kg(0.01))
        result = self.engine.compute(rule, weight_kg=20.0, stock_ampoule=STOCK)

        assert isinstance(result, DoseResult)
        assert result.ok
        assert result.dose_mg == pytest.approx(0.2)
        assert result.concentration_mg_per_ml == pytest.approx(1.0)
        assert result.volume_ml == pytest.approx(0.2)
        assert result.capped_by_max is False

    def test_max_clamp_is_flagged(self):
        rule = DosingRule(calc=per_kg(0.01, max_mg=0.15))
        result = self.engine.compute(rule, weight_kg=20.0, stock_ampoule=STOCK)

        assert result.dose_mg == pytest.approx(0.15)
        assert result.raw_dose_mg == pytest.approx(0.2)
        assert result.capped_by_max is True
        assert result.volume_ml == pytest.approx(0.15)

    def test_max_not_flagged_when_not_exceeded(self):
        rule = DosingRule(calc=fixed(0.5, max_mg=0.5))
        result = self.engine.compute(rule, weight_kg=None, stock_ampoule=STOCK)

        assert result.dose_mg == pytest.approx(0.5)
        assert result.capped_by_max is False

    def test_min_clamp(self):
        rule = DosingRule(calc=per_kg(0.1, min_mg=0.5, max_mg=5.0))
        result = self.engine.compute(rule, weight_kg=3.0, stock_ampoule=STOCK)

        assert result.dose_mg == pytest.approx(0.5)
        assert result.capped_by_max is False

    def test_fixed_dose_needs_no_weight(self):
        rule = DosingRule(calc=fixed(1.0))
        result = self.engine.compute(rule, weight_kg=None, stock_ampoule=STOCK)

        assert result.dose_mg == pytest.approx(1.0)
        assert result.volume_ml == pytest.approx(1.0)

    def test_dilution_overrides_ampoule_volume(self):
        rule = DosingRule(
            calc=fixed(1.0),
            dilution=Dilution(solution_text="NaCl 0.9 %", total_volume_ml=10.0)
        )
        result = self.engine.compute(rule, weight_kg=None, stock_ampoule=STOCK)

        assert result.concentration_mg_per_ml == pytest.approx(0.1)
        assert result.volume_ml == pytest.approx(10.0)
        assert result.total_volume_ml == 10.0
        assert result.solution_text == "NaCl 0.9 %"

    def test_manual_ampoule_takes_precedence(self):
        rule = DosingRule(calc=fixed(1.0))
        manual = AmpouleStrength(mg=5.0, ml=1.0)
        result = self.engine.compute(rule, weight_kg=None, stock_ampoule=STOCK, manual_ampoule=manual)

        assert result.concentration_mg_per_ml == pytest.approx(5.0)
        assert result.volume_ml == pytest.approx(0.2)

    def test_manual_ampoule_with_dilution(self):
        rule = DosingRule(calc=fixed(1.0), dilution=Dilution(total_volume_ml=10.0))
        manual = AmpouleStrength(mg=5.0, ml=1.0)
        result = self.engine.compute(rule, weight_kg=None, stock_ampoule=STOCK, manual_ampoule=manual)

        assert result.concentration_mg_per_ml == pytest.approx(0.5)
        assert result.volume_ml == pytest.approx(2.0)

    def test_volume_rounding_step(self):
        rule = DosingRule(calc=fixed(1.37), rounding=Rounding(ml_step=0.1))
        result = self.engine.compute(rule, weight_kg=None, stock_ampoule=STOCK)

        assert result.volume_ml == 1.4
        assert result.dose_mg == pytest.approx(1.37)

    def test_dose_rounding_step(self):
        rule = DosingRule(calc=fixed(1.234), rounding=Rounding(mg_step=0.05))
        result = self.engine.compute(rule, weight_kg=None, stock_ampoule=STOCK)

        assert result.dose_mg == 1.25
        # volume is derived from the unrounded dose
        assert result.volume_ml == pytest.approx(1.234)

    def test_missing_weight_on_per_kg(self):
        rule = DosingRule(id="pk", calc=per_kg(0.01))
        result = self.engine.compute(rule, weight_kg=None, stock_ampoule=STOCK)

        assert isinstance(result, DosingFailure)
        assert not result.ok
        assert result.code == ErrorCode.MISSING_WEIGHT
        assert result.category == ErrorCategory.COMPUTATION
        assert result.details["rule_id"] == "pk"

    def test_zero_weight_on_per_kg(self):
        rule = DosingRule(calc=per_kg(0.01))
        result = self.engine.compute(rule, weight_kg=0.0, stock_ampoule=STOCK)
        assert result.code == ErrorCode.MISSING_WEIGHT

    @pytest.mark.parametrize("weight", [float("inf"), float("-inf"), float("nan")])
    def test_non_finite_weight_on_per_kg(self, weight):
        rule = DosingRule(calc=per_kg(0.01, max_mg=1.0))
        result = self.engine.compute(rule, weight_kg=weight, stock_ampoule=STOCK)

        assert isinstance(result, DosingFailure)
        assert result.code == ErrorCode.MISSING_WEIGHT

    def test_zero_ampoule_volume(self):
        rule = DosingRule(calc=fixed(1.0))
        result = self.engine.compute(rule, weight_kg=None, stock_ampoule=AmpouleStrength(mg=1.0, ml=0.0))

        assert isinstance(result, DosingFailure)
        assert result.code == ErrorCode.INVALID_CONCENTRATION

    def test_zero_ampoule_volume_with_dilution_is_valid(self):
        rule = DosingRule(calc=fixed(1.0), dilution=Dilution(total_volume_ml=10.0))
        result = self.engine.compute(rule, weight_kg=None, stock_ampoule=AmpouleStrength(mg=1.0, ml=0.0))
        assert result.concentration_mg_per_ml == pytest.approx(0.1)

    def test_absent_ampoule(self):
        rule = DosingRule(calc=fixed(1.0))
        result = self.engine.compute(rule, weight_kg=None, stock_ampoule=None)
        assert result.code == ErrorCode.INVALID_CONCENTRATION

    def test_zero_mg_ampoule(self):
        rule = DosingRule(calc=fixed(1.0))
        result = self.engine.compute(rule, weight_kg=None, stock_ampoule=AmpouleStrength(mg=0.0, ml=1.0))
        assert result.code == ErrorCode.INVALID_CONCENTRATION

    def test_unknown_calc_mode(self):
        calc = DoseCalc.model_construct(mode="perLiter", mg_per_kg=None, fixed_mg=1.0,
                                        min_mg=None, max_mg=None)
        rule = DosingRule.model_construct(id="odd", priority=0, calc=calc)
        result = self.engine.compute(rule, weight_kg=10.0, stock_ampoule=STOCK)

        assert isinstance(result, DosingFailure)
        assert result.code == ErrorCode.UNKNOWN_CALC_MODE

    def test_near_zero_values_normalize_to_zero(self):
        rule = DosingRule(calc=fixed(1e-12))
        result = self.engine.compute(rule, weight_kg=None, stock_ampoule=STOCK)

        assert result.dose_mg == 0.0
        assert result.volume_ml == 0.0

    def test_pass_through_fields(self):
        rule = DosingRule(id="r1", calc=fixed(1.0), hint="Repeat after 3 min",
                          max_cumulative_mg_per_event=3.0)
        result = self.engine.compute(rule, weight_kg=None, stock_ampoule=STOCK)

        assert result.hint == "Repeat after 3 min"
        assert result.applied_rule_id == "r1"
        assert result.max_cumulative_mg_per_event == 3.0
        assert result.total_volume_ml is None


class TestRoundingAndClamp:
    """Test helper arithmetic"""

    @pytest.mark.parametrize("value,step,expected", [
        (1.37, 0.1, 1.4),
        (0.18, 0.1, 0.2),
        (0.25, 0.1, 0.3),
        (0.14, 0.1, 0.1),
        (1.234, 0.05, 1.25),
        (7.0, 2.5, 7.5),
    ])
    def test_round_to_step(self, value, step, expected):
        assert round_to_step(value, step) == expected

    @pytest.mark.parametrize("step", [None, 0, 0.0, -0.1])
    def test_no_rounding_without_positive_step(self, step):
        assert round_to_step(1.37, step) == 1.37

    def test_huge_value_does_not_overflow_decimal_context(self):
        assert round_to_step(1e30, 0.1) == pytest.approx(1e30)
        assert round_to_step(1e300, 0.05) == pytest.approx(1e300)

    def test_non_finite_value_is_returned_unchanged(self):
        assert round_to_step(float("inf"), 0.1) == float("inf")

    def test_ampoule_mg_per_ml(self):
        assert AmpouleStrength(mg=5.0, ml=2.0).mg_per_ml == pytest.approx(2.5)
        assert AmpouleStrength(mg=1.0, ml=0.0).mg_per_ml is None
        assert AmpouleStrength(mg=1.0, ml=-1.0).mg_per_ml is None

    def test_clamp_reports_binding_upper_bound(self):
        assert clamp_dose(2.0, fixed(2.0, max_mg=1.0)) == (1.0, True)
        assert clamp_dose(0.2, fixed(0.2, min_mg=0.5)) == (0.5, False)
        assert clamp_dose(0.7, fixed(0.7, min_mg=0.5, max_mg=1.0)) == (0.7, False)
