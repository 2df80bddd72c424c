"""
Emergency Dosing Engine
Rule-driven selection and dose/volume calculation for emergency medications
"""

from .schema import (AmpouleStrength, CalcMode, Catalog, DoseRequest, DoseResult, DosingFailure,
                     DosingRule, EngineConfig, Medication, RouteSpec, UseCase)
from .selector import RuleSelector, select_rule
from .calculator import DoseEngine, round_to_step
from .facade import DosingFacade, calculate_dose
from .errors import DosingError, ErrorCode

__all__ = [
    'AmpouleStrength', 'CalcMode', 'Catalog', 'DoseRequest', 'DoseResult', 'DosingFailure',
    'DosingRule', 'EngineConfig', 'Medication', 'RouteSpec', 'UseCase',
    'RuleSelector', 'select_rule', 'DoseEngine', 'round_to_step',
    'DosingFacade', 'calculate_dose', 'DosingError', 'ErrorCode'
]
