"""
Pydantic schemas for dosing engine components
"""

from pydantic import BaseModel, ConfigDict, Field, AliasChoices, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import Tuple, Dict, Optional, Any
from enum import Enum
import math

from .errors import ErrorCode, ErrorCategory, get_error_description


class CalcMode(str, Enum):
    PER_KG = "perKg"
    FIXED = "fixed"

    @classmethod
    def parse(cls, value: Any) -> "CalcMode":
        """Accept perKg / per_kg / PER_KG / fixed / FIXED spellings"""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("_", "").replace("-", "")
        if key == "perkg":
            return cls.PER_KG
        if key == "fixed":
            return cls.FIXED
        raise ValueError(f"Unknown calc mode: {value!r}")


class CatalogModel(BaseModel):
    """Read-only reference data; camelCase in catalog documents, snake_case in Python"""
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )


class AmpouleStrength(CatalogModel):
    """Stock or manually entered concentration"""
    mg: float  # active substance per ampoule
    ml: float  # solution volume per ampoule

    @property
    def mg_per_ml(self) -> Optional[float]:
        if self.ml <= 0:
            return None
        return self.mg / self.ml

    @model_validator(mode="before")
    @classmethod
    def _from_pair(cls, data: Any) -> Any:
        if isinstance(data, (list, tuple)) and len(data) == 2:
            return {"mg": data[0], "ml": data[1]}
        return data


class AgeRange(CatalogModel):
    min_months: Optional[int] = None  # inclusive
    max_months_exclusive: Optional[int] = None  # exclusive

    def contains(self, age_months: int) -> bool:
        if self.min_months is not None and age_months < self.min_months:
            return False
        if self.max_months_exclusive is not None and age_months >= self.max_months_exclusive:
            return False
        return True


class WeightRange(CatalogModel):
    min_kg: Optional[float] = None  # inclusive
    max_kg_exclusive: Optional[float] = None  # exclusive

    def contains(self, weight_kg: Optional[float]) -> bool:
        if weight_kg is None or not math.isfinite(weight_kg):
            return False
        if self.min_kg is not None and weight_kg < self.min_kg:
            return False
        if self.max_kg_exclusive is not None and weight_kg >= self.max_kg_exclusive:
            return False
        return True


class DoseCalc(CatalogModel):
    """Dose formula: per-kg or fixed, with optional mg clamps"""
    mode: CalcMode = Field(validation_alias=AliasChoices("mode", "type"))
    mg_per_kg: Optional[float] = None
    fixed_mg: Optional[float] = None
    min_mg: Optional[float] = None
    max_mg: Optional[float] = None

    @field_validator("mode", mode="before")
    @classmethod
    def _parse_mode(cls, value: Any) -> CalcMode:
        return CalcMode.parse(value)

    @model_validator(mode="after")
    def _check_amounts(self) -> "DoseCalc":
        if self.mode == CalcMode.PER_KG and self.mg_per_kg is None:
            raise ValueError("perKg calculation requires mgPerKg")
        if self.mode == CalcMode.FIXED and self.fixed_mg is None:
            raise ValueError("fixed calculation requires fixedMg")
        if self.min_mg is not None and self.max_mg is not None and self.min_mg > self.max_mg:
            raise ValueError(f"minMg ({self.min_mg}) exceeds maxMg ({self.max_mg})")
        return self


class Dilution(CatalogModel):
    solution_text: Optional[str] = None  # display only, e.g. "NaCl 0.9 %"
    total_volume_ml: Optional[float] = None  # target volume after dilution


class Conditions(CatalogModel):
    requires_manual_ampoule: Optional[bool] = None


class Rounding(CatalogModel):
    mg_step: Optional[float] = None
    ml_step: Optional[float] = None
    show_trailing_zeros: Optional[bool] = None


class Repetition(CatalogModel):
    repeat_allowed: Optional[bool] = None
    min_interval_minutes: Optional[int] = None
    max_repeats: Optional[int] = None


class InfoTexts(CatalogModel):
    indication: Optional[str] = None
    contraindication: Optional[str] = None
    effect: Optional[str] = None
    side_effect: Optional[str] = None


class DosingRule(CatalogModel):
    """Atomic decision unit: applicability windows plus a dose formula"""
    id: Optional[str] = None  # diagnostics only
    priority: int = 0  # higher wins among matching rules
    age: Optional[AgeRange] = None
    weight: Optional[WeightRange] = None
    calc: DoseCalc
    dilution: Optional[Dilution] = None
    conditions: Optional[Conditions] = None
    hint: Optional[str] = None
    rounding: Optional[Rounding] = None
    repeats: Optional[Repetition] = None
    max_cumulative_mg_per_event: Optional[float] = None

    @property
    def requires_manual_ampoule(self) -> bool:
        return bool(self.conditions and self.conditions.requires_manual_ampoule)

    @property
    def rounding_mg(self) -> Optional[float]:
        return self.rounding.mg_step if self.rounding else None

    @property
    def rounding_ml(self) -> Optional[float]:
        return self.rounding.ml_step if self.rounding else None

    @property
    def total_volume_ml(self) -> Optional[float]:
        return self.dilution.total_volume_ml if self.dilution else None


class RouteSpec(CatalogModel):
    route: str  # e.g. "i.v.", "i.m.", "i.o."
    rules: Tuple[DosingRule, ...] = ()
    notes: Optional[str] = None


class UseCase(CatalogModel):
    id: str
    name: str
    routes: Tuple[RouteSpec, ...] = ()
    default_route: Optional[str] = None
    info: Optional[InfoTexts] = None
    notes: Optional[str] = None

    def find_route(self, label: str, case_insensitive: bool = True) -> Optional[RouteSpec]:
        for spec in self.routes:
            if spec.route == label:
                return spec
        if case_insensitive:
            wanted = label.strip().casefold()
            for spec in self.routes:
                if spec.route.strip().casefold() == wanted:
                    return spec
        return None

    @property
    def route_labels(self) -> Tuple[str, ...]:
        return tuple(spec.route for spec in self.routes)


class Medication(CatalogModel):
    id: str
    name: str
    ampoule: AmpouleStrength  # default stock strength
    use_cases: Tuple[UseCase, ...] = ()
    info: Optional[InfoTexts] = None
    notes: Optional[str] = None
    version: int = 1

    def find_use_case(self, key: str) -> Optional[UseCase]:
        for use_case in self.use_cases:
            if use_case.id == key:
                return use_case
        wanted = key.strip().casefold()
        for use_case in self.use_cases:
            if use_case.name.strip().casefold() == wanted or use_case.id.casefold() == wanted:
                return use_case
        return None


class Catalog(CatalogModel):
    """Immutable snapshot of all medications"""
    medications: Tuple[Medication, ...] = ()
    version: int = 1

    def find_medication(self, key: str) -> Optional[Medication]:
        for medication in self.medications:
            if medication.id == key:
                return medication
        wanted = key.strip().casefold()
        for medication in self.medications:
            if medication.name.strip().casefold() == wanted or medication.id.casefold() == wanted:
                return medication
        return None


class DoseRequest(BaseModel):
    """Request-shaped input from the UI layer"""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    medication_id: str
    use_case_id: str
    route: Optional[str] = None
    age_years: int = 0
    age_months: int = 0  # remainder months on top of age_years
    total_months: Optional[int] = None  # takes precedence when set
    weight_kg: Optional[float] = None
    manual_ampoule: Optional[AmpouleStrength] = None

    def age_in_months(self) -> int:
        if self.total_months is not None:
            return self.total_months
        return self.age_years * 12 + self.age_months


class DoseResult(BaseModel):
    """Successful calculation; numbers are unformatted"""
    model_config = ConfigDict(frozen=True)

    dose_mg: float
    concentration_mg_per_ml: float
    volume_ml: float
    capped_by_max: bool = False
    raw_dose_mg: Optional[float] = None  # before clamping and rounding
    total_volume_ml: Optional[float] = None
    solution_text: Optional[str] = None
    hint: Optional[str] = None
    applied_rule_id: Optional[str] = None
    applied_route: Optional[str] = None
    repeats: Optional[Repetition] = None
    max_cumulative_mg_per_event: Optional[float] = None

    @property
    def ok(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["ok"] = True
        return data


class DosingFailure(BaseModel):
    """Tagged failure; never a silent zero"""
    model_config = ConfigDict(frozen=True)

    code: ErrorCode
    message: str
    details: Dict[str, Any] = {}

    @property
    def ok(self) -> bool:
        return False

    @property
    def kind(self) -> str:
        return self.code.name

    @property
    def category(self) -> ErrorCategory:
        return self.code.category

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": False,
            "error_code": self.code.value,
            "kind": self.kind,
            "category": self.category.value,
            "message": self.message,
            "description": get_error_description(self.code),
            "details": self.details,
        }


class EngineConfig(BaseModel):
    """Configuration for the dosing engine"""

    # Values closer to zero than this are reported as exactly 0
    zero_epsilon: float = 1e-9

    # Catalog
    catalog_path: str = "config/medications.json"
    strict_catalog: bool = False

    # Route matching
    case_insensitive_routes: bool = True

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
