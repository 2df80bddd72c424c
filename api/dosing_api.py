#!/usr/bin/env python3
"""
Dosing API
Provides REST endpoints for rule-based dose and volume calculation
"""

from flask import Blueprint, request, jsonify, current_app
from pydantic import ValidationError
import logging

from dosing_engine.schema import DoseRequest, DoseResult
from dosing_engine.errors import ErrorCategory
from dosing_engine.facade import DosingFacade

logger = logging.getLogger(__name__)

# Create Blueprint
dosing_api = Blueprint('dosing_api', __name__, url_prefix='/api/dosing')

FAILURE_STATUS = {
    ErrorCategory.LOOKUP: 404,
    ErrorCategory.SELECTION: 422,
    ErrorCategory.COMPUTATION: 422,
    ErrorCategory.REQUEST: 400,
}


def _facade() -> DosingFacade:
    return current_app.extensions['dosing_facade']


@dosing_api.route('/calculate', methods=['POST'])
def calculate():
    """
    Calculate dose and volume for a medication / use case / route

    Request JSON:
    {
        "medicationId": "adrenaline",
        "useCaseId": "ana",
        "route": "i.m.",
        "ageYears": 5,
        "ageMonths": 0,
        "weightKg": 18,
        "manualAmpoule": {"mg": 1.0, "ml": 1.0}
    }
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'No JSON data provided'}), 400

    try:
        dose_request = DoseRequest.model_validate(data)
    except ValidationError as e:
        return jsonify({
            'error': 'Invalid request',
            'details': e.errors(include_url=False, include_context=False)
        }), 400

    outcome = _facade().calculate(dose_request)
    if isinstance(outcome, DoseResult):
        return jsonify(outcome.to_dict())

    return jsonify(outcome.to_dict()), FAILURE_STATUS.get(outcome.category, 422)


@dosing_api.route('/medications', methods=['GET'])
def list_medications():
    """List medications with their use cases and routes"""
    catalog = _facade().catalog
    return jsonify({
        'medications': [
            {
                'id': medication.id,
                'name': medication.name,
                'ampoule': {'mg': medication.ampoule.mg, 'ml': medication.ampoule.ml},
                'use_cases': [
                    {
                        'id': use_case.id,
                        'name': use_case.name,
                        'default_route': use_case.default_route,
                        'routes': list(use_case.route_labels)
                    }
                    for use_case in medication.use_cases
                ]
            }
            for medication in catalog.medications
        ]
    })


@dosing_api.route('/medications/<med_id>/use-cases/<use_case_id>/routes', methods=['GET'])
def list_routes(med_id: str, use_case_id: str):
    """Route labels available for a medication / use case"""
    facade = _facade()
    medication = facade.catalog.find_medication(med_id)
    if medication is None or medication.find_use_case(use_case_id) is None:
        return jsonify({'error': f'Unknown medication/use case: {med_id}/{use_case_id}'}), 404

    return jsonify({
        'medication_id': medication.id,
        'use_case_id': use_case_id,
        'routes': facade.available_routes(med_id, use_case_id)
    })
