#!/usr/bin/env python3
"""
Emergency Dosing Calculator - Flask application
Loads the medication catalog once and serves the dosing API
"""

import logging
import os
from typing import Optional

from flask import Flask, jsonify
from flask_cors import CORS

from dosing_engine.calculator import DoseEngine
from dosing_engine.errors import DosingError, ErrorLogger
from dosing_engine.facade import DosingFacade
from dosing_engine.schema import Catalog
from services.catalog import load_catalog, load_engine_config

logger = logging.getLogger(__name__)
error_logger = ErrorLogger('dosing_app')


def create_app(config_path: Optional[str] = None, catalog: Optional[Catalog] = None) -> Flask:
    """
    Application factory

    Args:
        config_path: Engine YAML config; defaults to config/dosing.yaml
        catalog: Pre-built catalog snapshot; loaded from config.catalog_path when omitted
    """
    config = load_engine_config(config_path)

    # Configure logging
    logging.basicConfig(level=config.log_level.upper(), format=config.log_format)

    if catalog is None:
        try:
            catalog = load_catalog(config.catalog_path, strict=config.strict_catalog)
        except DosingError as e:
            error_logger.log_error(e)
            raise
    logger.info(f"Catalog ready with {len(catalog.medications)} medications")

    # Initialize Flask app
    app = Flask(__name__)
    CORS(app)
    app.extensions['dosing_facade'] = DosingFacade(catalog, engine=DoseEngine(config), config=config)

    # Register API blueprints
    from api.dosing_api import dosing_api
    app.register_blueprint(dosing_api)
    logger.info("Dosing API registered successfully")

    @app.route('/health')
    def health():
        return jsonify({
            'status': 'ok',
            'medications': len(catalog.medications),
            'catalog_version': catalog.version
        })

    return app


if __name__ == '__main__':
    port = int(os.getenv('PORT', 5000))
    create_app().run(host='0.0.0.0', port=port, debug=os.getenv('FLASK_DEBUG') == '1')
