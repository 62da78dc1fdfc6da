"""
Benefit Application Flow Engine

State validation and flow routing for a multi-step benefits application.

Hosted as a JSON API with:
- Session or database backed application state
- Configurable eligibility rules
- Request logging
"""

import logging
import os
from datetime import datetime, timezone
from flask import Flask, request, g
from flask_sqlalchemy import SQLAlchemy

# Initialize extensions
db = SQLAlchemy()


def create_app(test_config=None):
    """Application factory pattern."""
    app = Flask(__name__, instance_relative_config=True)

    # Default configuration
    app.config.from_mapping(
        SECRET_KEY=os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production'),
        SQLALCHEMY_DATABASE_URI=os.environ.get('DATABASE_URL', 'sqlite:///benefit_flow.db'),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,

        # State store settings
        STATE_STORE=os.environ.get('STATE_STORE', 'session'),
        STATE_TIMEOUT_MINUTES=int(os.environ.get('STATE_TIMEOUT_MINUTES', 20)),

        # Eligibility rules
        AGE_YOUTH_MIN=int(os.environ.get('AGE_YOUTH_MIN', 16)),
        AGE_ADULTS_MIN=int(os.environ.get('AGE_ADULTS_MIN', 18)),
        AGE_SENIORS_MIN=int(os.environ.get('AGE_SENIORS_MIN', 65)),
        PARTNER_MARITAL_STATUSES=os.environ.get('PARTNER_MARITAL_STATUSES', 'married,commonlaw'),
        EMAIL_COMMUNICATION_METHODS=os.environ.get('EMAIL_COMMUNICATION_METHODS', 'email'),
        APPLY_ELIGIBILITY_RULES=os.environ.get('APPLY_ELIGIBILITY_RULES', '[]'),
        APPLICATION_CURRENT_DATE=os.environ.get('APPLICATION_CURRENT_DATE', ''),

        DEFAULT_LANGUAGE=os.environ.get('DEFAULT_LANGUAGE', 'en'),
        LOG_LEVEL=os.environ.get('LOG_LEVEL', 'INFO'),
        LOOKUP_DATA=None,
    )

    if test_config is None:
        # Load instance config if it exists
        app.config.from_pyfile('config.py', silent=True)
    else:
        # Load test config
        app.config.from_mapping(test_config)

    # Ensure instance folder exists
    try:
        os.makedirs(app.instance_path)
    except OSError:
        pass

    app.logger.setLevel(app.config['LOG_LEVEL'])
    logging.getLogger('benefit_flow').setLevel(app.config['LOG_LEVEL'])

    # Initialize extensions with app
    db.init_app(app)

    # Rules and lookups are built once; invalid values fail here
    from benefit_flow.eligibility_rules import RULES_EXTENSION_KEY, EligibilityRules
    from benefit_flow.review_summary import ReviewLookups
    from benefit_flow.routes import LOOKUPS_EXTENSION_KEY, applications_bp, flows_bp
    app.extensions[RULES_EXTENSION_KEY] = EligibilityRules.from_config(app.config)
    app.extensions[LOOKUPS_EXTENSION_KEY] = ReviewLookups.from_data(app.config['LOOKUP_DATA'])

    # Register blueprints
    app.register_blueprint(applications_bp)
    app.register_blueprint(flows_bp)

    # Request logging
    @app.before_request
    def before_request():
        """Log request start."""
        g.request_start_time = datetime.now(timezone.utc)

    @app.after_request
    def log_request(response):
        """Log request completion."""
        if hasattr(g, 'request_start_time'):
            duration = (datetime.now(timezone.utc) - g.request_start_time).total_seconds()
            app.logger.info(
                f'{request.method} {request.path} - {response.status_code} - {duration:.3f}s'
            )
        return response

    # Create database tables
    with app.app_context():
        from benefit_flow import models  # noqa: F401
        db.create_all()

    # Error handlers
    @app.errorhandler(404)
    def not_found(error):
        return {'ok': False, 'errors': [{'field': '', 'message': 'Not found', 'code': 'not_found'}]}, 404

    @app.errorhandler(500)
    def internal_error(error):
        """Handle internal errors."""
        db.session.rollback()
        app.logger.error(f'Internal error: {str(error)}')
        return {'ok': False, 'errors': [{'field': '', 'message': 'Internal server error', 'code': 'internal'}]}, 500

    return app
