"""
Dosing facade - resolves a request against the catalog and runs selection + calculation
"""

from typing import List, Optional, Union
import logging
import math

from .schema import Catalog, DoseRequest, DoseResult, DosingFailure, EngineConfig, Medication, RouteSpec, UseCase
from .selector import RuleSelector
from .calculator import DoseEngine
from .errors import DosingError, ErrorCode, ErrorLogger

logger = logging.getLogger(__name__)


class DosingFacade:
    """Single entry point for the UI layer; holds an immutable catalog snapshot"""

    def __init__(
        self,
        catalog: Catalog,
        engine: Optional[DoseEngine] = None,
        selector: Optional[RuleSelector] = None,
        config: Optional[EngineConfig] = None
    ):
        self.catalog = catalog
        self.config = config or (engine.config if engine else EngineConfig())
        self.engine = engine or DoseEngine(self.config)
        self.selector = selector or RuleSelector()
        self.error_logger = ErrorLogger(__name__)

    def calculate(self, request: DoseRequest) -> Union[DoseResult, DosingFailure]:
        """
        Resolve medication -> use case -> route -> rule, then compute

        Returns:
            DoseResult, or a DosingFailure tagged as lookup
            (MEDICATION_NOT_FOUND, USE_CASE_NOT_FOUND, ROUTE_NOT_FOUND),
            selection (NO_MATCHING_RULE), computation or INVALID_REQUEST
        """
        try:
            age_months = self._validated_age(request)
            weight_kg = self._validated_weight(request)
            medication = self._resolve_medication(request.medication_id)
            use_case = self._resolve_use_case(medication, request.use_case_id)
            route_spec = self._resolve_route(use_case, request.route)
        except DosingError as e:
            failure = e.to_failure()
            self.error_logger.log_failure(failure)
            return failure

        manual_ampoule = request.manual_ampoule
        rule = self.selector.select(
            route_spec.rules,
            age_months=age_months,
            weight_kg=weight_kg,
            has_manual_ampoule=manual_ampoule is not None
        )
        if rule is None:
            failure = DosingFailure(
                code=ErrorCode.NO_MATCHING_RULE,
                message=(f"No dosing rule for {medication.name} / {use_case.name} / {route_spec.route} "
                         f"at age {age_months} months, weight {weight_kg} kg"),
                details={
                    "medication_id": medication.id,
                    "use_case_id": use_case.id,
                    "route": route_spec.route,
                    "age_months": age_months,
                    "weight_kg": weight_kg,
                    "manual_ampoule": manual_ampoule is not None
                }
            )
            self.error_logger.log_failure(failure)
            return failure

        outcome = self.engine.compute(
            rule,
            weight_kg=weight_kg,
            stock_ampoule=medication.ampoule,
            manual_ampoule=manual_ampoule
        )
        if isinstance(outcome, DoseResult):
            return outcome.model_copy(update={"applied_route": route_spec.route})
        return outcome

    def available_routes(self, medication_id: str, use_case_id: str) -> List[str]:
        """Route labels for a medication/use case; empty when either is unknown"""
        medication = self.catalog.find_medication(medication_id)
        if medication is None:
            return []
        use_case = medication.find_use_case(use_case_id)
        if use_case is None:
            return []
        return list(use_case.route_labels)

    def _validated_age(self, request: DoseRequest) -> int:
        age_months = request.age_in_months()
        if age_months < 0 or request.age_months < 0 or request.age_years < 0:
            raise DosingError(
                error_code=ErrorCode.INVALID_REQUEST,
                message=f"Age must not be negative (got {age_months} months)",
                details={"age_years": request.age_years, "age_months": request.age_months,
                         "total_months": request.total_months}
            )
        return age_months

    def _validated_weight(self, request: DoseRequest) -> Optional[float]:
        """Reject NaN/inf; a non-positive weight counts as unknown"""
        weight_kg = request.weight_kg
        if weight_kg is None:
            return None
        if not math.isfinite(weight_kg):
            raise DosingError(
                error_code=ErrorCode.INVALID_REQUEST,
                message=f"Weight must be a finite number (got {weight_kg})",
                details={"weight_kg": str(weight_kg)}
            )
        if weight_kg <= 0:
            logger.debug(f"Ignoring non-positive weight {weight_kg} kg")
            return None
        return weight_kg

    def _resolve_medication(self, medication_id: str) -> Medication:
        medication = self.catalog.find_medication(medication_id)
        if medication is None:
            raise DosingError(
                error_code=ErrorCode.MEDICATION_NOT_FOUND,
                message=f"Medication not found: {medication_id}",
                details={"medication_id": medication_id}
            )
        return medication

    def _resolve_use_case(self, medication: Medication, use_case_id: str) -> UseCase:
        use_case = medication.find_use_case(use_case_id)
        if use_case is None:
            raise DosingError(
                error_code=ErrorCode.USE_CASE_NOT_FOUND,
                message=f"Use case not found for {medication.name}: {use_case_id}",
                details={"medication_id": medication.id, "use_case_id": use_case_id}
            )
        return use_case

    def _resolve_route(self, use_case: UseCase, route: Optional[str]) -> RouteSpec:
        case_insensitive = self.config.case_insensitive_routes

        if route:
            route_spec = use_case.find_route(route, case_insensitive=case_insensitive)
            if route_spec is None:
                raise DosingError(
                    error_code=ErrorCode.ROUTE_NOT_FOUND,
                    message=f"Route not found for {use_case.name}: {route}",
                    details={"use_case_id": use_case.id, "route": route,
                             "available_routes": list(use_case.route_labels)}
                )
            return route_spec

        # Fall back to the declared default, then the first route
        if use_case.default_route:
            route_spec = use_case.find_route(use_case.default_route, case_insensitive=case_insensitive)
            if route_spec is not None:
                return route_spec
            logger.warning(
                f"Default route {use_case.default_route!r} of use case {use_case.id} has no route spec"
            )

        if use_case.routes:
            return use_case.routes[0]

        raise DosingError(
            error_code=ErrorCode.ROUTE_NOT_FOUND,
            message=f"Use case {use_case.name} declares no routes",
            details={"use_case_id": use_case.id, "route": None}
        )


def calculate_dose(
    catalog: Catalog,
    request: DoseRequest,
    engine: Optional[DoseEngine] = None
) -> Union[DoseResult, DosingFailure]:
    """Functional form of DosingFacade(catalog).calculate(request)"""
    return DosingFacade(catalog, engine=engine).calculate(request)
