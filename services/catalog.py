#!/usr/bin/env python3
"""
Medication Catalog Loader
Builds the immutable Medication -> UseCase -> RouteSpec -> DosingRule graph from JSON/YAML documents
"""

import json
import os
import yaml
from typing import Dict, List, Optional, Any
from pathlib import Path
import logging

from pydantic import ValidationError

from dosing_engine.schema import (AmpouleStrength, Catalog, DosingRule, EngineConfig,
                                  Medication, RouteSpec, UseCase)
from dosing_engine.errors import DosingError, ErrorCode

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR / "config" / "dosing.yaml"


def _get(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First present key among camelCase/snake_case spellings"""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _is_unknown_calc_mode(exc: ValidationError) -> bool:
    for error in exc.errors():
        loc = error.get("loc", ())
        if loc and loc[0] == "calc" and loc[-1] in ("mode", "type"):
            return True
    return False


class CatalogParser:
    """Tolerant parser: invalid entries are skipped with a warning unless strict"""

    def __init__(self, strict: bool = False):
        self.strict = strict
        self.skipped: List[str] = []

    def parse(self, data: Any) -> Catalog:
        entries, version = self._medication_entries(data)

        medications = []
        for index, entry in enumerate(entries):
            medication = self._parse_medication(entry, f"medications[{index}]")
            if medication is not None:
                medications.append(medication)

        catalog = Catalog(medications=medications, version=version)
        logger.info(
            f"Catalog parsed: {len(catalog.medications)} medications, {len(self.skipped)} entries skipped"
        )
        return catalog

    def _medication_entries(self, data: Any):
        if isinstance(data, list):
            return data, 1
        if isinstance(data, dict):
            # {"medications": [...]} with any key casing
            key = next((k for k in data if str(k).lower() == "medications"), None)
            if key is not None and isinstance(data[key], list):
                return data[key], self._catalog_version(data.get("version"))
        raise DosingError(
            error_code=ErrorCode.CATALOG_INVALID,
            message="Catalog must be a list of medications or an object with a 'medications' list",
            details={"type": type(data).__name__}
        )

    def _catalog_version(self, value: Any) -> int:
        if value is None:
            return 1
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            self._reject("version", f"catalog version must be an integer, got {value!r}", e)
            return 1

    def _reject(self, path: str, message: str, exc: Optional[Exception] = None,
                error_code: ErrorCode = ErrorCode.CATALOG_INVALID) -> None:
        if self.strict:
            raise DosingError(
                error_code=error_code,
                message=f"Invalid catalog entry at {path}: {message}",
                details={"path": path},
                original_exception=exc
            )
        logger.warning(f"Skipping catalog entry at {path}: {message}")
        self.skipped.append(path)

    def _parse_medication(self, entry: Any, path: str) -> Optional[Medication]:
        if not isinstance(entry, dict):
            self._reject(path, "medication must be an object")
            return None

        med_id = str(_get(entry, "id", "code", "name", default="")).strip()
        name = str(_get(entry, "name", default=med_id)).strip()
        if not med_id:
            self._reject(path, "medication has neither id, code nor name")
            return None

        try:
            ampoule = AmpouleStrength.model_validate(_get(entry, "ampoule", "stockAmpoule", "stock_ampoule"))
        except ValidationError as e:
            self._reject(path, f"invalid ampoule strength for {med_id}", e)
            return None

        use_cases = []
        for index, uc_entry in enumerate(_get(entry, "useCases", "use_cases", default=[])):
            use_case = self._parse_use_case(uc_entry, f"{path}.useCases[{index}]")
            if use_case is not None:
                use_cases.append(use_case)

        try:
            return Medication(
                id=med_id,
                name=name or med_id,
                ampoule=ampoule,
                use_cases=use_cases,
                info=_get(entry, "info"),
                notes=_get(entry, "notes"),
                version=_get(entry, "version", default=1)
            )
        except ValidationError as e:
            self._reject(path, str(e), e)
            return None

    def _parse_use_case(self, entry: Any, path: str) -> Optional[UseCase]:
        if not isinstance(entry, dict):
            self._reject(path, "use case must be an object")
            return None

        uc_id = str(_get(entry, "id", "code", "name", default="")).strip()
        if not uc_id:
            self._reject(path, "use case has neither id, code nor name")
            return None

        routes = []
        for index, route_entry in enumerate(_get(entry, "routes", default=[])):
            route_spec = self._parse_route(route_entry, f"{path}.routes[{index}]")
            if route_spec is not None:
                routes.append(route_spec)

        try:
            return UseCase(
                id=uc_id,
                name=str(_get(entry, "name", default=uc_id)),
                routes=routes,
                default_route=_get(entry, "defaultRoute", "default_route"),
                info=_get(entry, "info"),
                notes=_get(entry, "notes")
            )
        except ValidationError as e:
            self._reject(path, str(e), e)
            return None

    def _parse_route(self, entry: Any, path: str) -> Optional[RouteSpec]:
        if not isinstance(entry, dict) or not _get(entry, "route"):
            self._reject(path, "route must be an object with a 'route' label")
            return None

        rules = []
        for index, rule_entry in enumerate(_get(entry, "rules", default=[])):
            try:
                rules.append(DosingRule.model_validate(rule_entry))
            except ValidationError as e:
                if _is_unknown_calc_mode(e):
                    self._reject(f"{path}.rules[{index}]", "unknown calc mode", e,
                                 error_code=ErrorCode.UNKNOWN_CALC_MODE)
                else:
                    self._reject(f"{path}.rules[{index}]", str(e), e)

        try:
            return RouteSpec(route=str(entry["route"]), rules=rules, notes=_get(entry, "notes"))
        except ValidationError as e:
            self._reject(path, str(e), e)
            return None


def parse_catalog(data: Any, strict: bool = False) -> Catalog:
    """Build a Catalog from already-decoded JSON/YAML data"""
    return CatalogParser(strict=strict).parse(data)


def load_catalog(path, strict: bool = False) -> Catalog:
    """
    Load a medication catalog file

    Args:
        path: .json, .yaml or .yml document
        strict: Raise on the first invalid entry instead of skipping it

    Returns:
        Immutable Catalog snapshot
    """
    catalog_file = Path(path)
    if not catalog_file.exists():
        raise DosingError(
            error_code=ErrorCode.CATALOG_NOT_FOUND,
            message=f"Catalog file not found: {catalog_file}",
            details={"path": str(catalog_file)}
        )

    try:
        with open(catalog_file, 'r', encoding='utf-8') as f:
            if catalog_file.suffix.lower() in ('.yaml', '.yml'):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise DosingError(
            error_code=ErrorCode.CATALOG_INVALID,
            message=f"Catalog file could not be decoded: {catalog_file}",
            details={"path": str(catalog_file)},
            original_exception=e
        )

    logger.info(f"Loading medication catalog from {catalog_file}")
    return parse_catalog(data, strict=strict)


def load_engine_config(config_path: Optional[str] = None) -> EngineConfig:
    """Load engine configuration from YAML, falling back to defaults"""
    config_file = Path(config_path or os.getenv('DOSING_CONFIG') or DEFAULT_CONFIG_PATH)

    config_data: Dict[str, Any] = {}
    if config_file.exists():
        with open(config_file, 'r') as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning(f"Config file {config_file} not found, using defaults")

    if os.getenv('LOG_LEVEL'):
        config_data['log_level'] = os.getenv('LOG_LEVEL')

    try:
        config = EngineConfig(**config_data)
    except (ValidationError, TypeError) as e:
        raise DosingError(
            error_code=ErrorCode.CONFIG_INVALID,
            message=f"Invalid engine configuration in {config_file}",
            details={"path": str(config_file)},
            original_exception=e
        )

    catalog_path = Path(config.catalog_path)
    if not catalog_path.is_absolute():
        config = config.model_copy(update={"catalog_path": str(BASE_DIR / catalog_path)})
    return config
