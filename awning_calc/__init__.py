import logging
import os
from flask import Flask, request, session, jsonify
from flask_babel import Babel
from .models import db


def get_locale():
    selected_locale = request.args.get('lang', session.get('lang', 'en'))
    return selected_locale


def create_app(config_overrides=None):
    app = Flask(__name__)

    @app.before_request
    def before_request():
        """Capture language parameter and save to session for persistence across requests"""
        if 'lang' in request.args:
            session['lang'] = request.args.get('lang')

    # Load configurations
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///awning_calc.db")
    app.config['SQLALCHEMY_DATABASE_URI'] = DATABASE_URL
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    # Secret key for session management
    app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')

    app.config['BABEL_DEFAULT_LOCALE'] = os.getenv('BABEL_DEFAULT_LOCALE', 'en')
    app.config['BABEL_SUPPORTED_LOCALES'] = ['en']

    # Third-party integrations
    app.config['GOOGLE_MAPS_API_KEY'] = os.getenv('GOOGLE_MAPS_API_KEY')
    app.config['HUBSPOT_ACCESS_TOKEN'] = os.getenv('HUBSPOT_ACCESS_TOKEN')
    app.config['SUPER_ADMIN_EMAIL'] = os.getenv('SUPER_ADMIN_EMAIL')

    app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024  # 16MB max upload size

    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(os.getenv('LOG_LEVEL', 'INFO').upper())
    logging.getLogger('awning_calc').setLevel(app.logger.level)

    Babel(app, locale_selector=get_locale)

    # Initialize database
    db.init_app(app)

    # Register blueprints
    from .routes import (
        main_blueprint, costsheets_blueprint, costsheet_import_blueprint, costsheet_export_blueprint,
        analytics_blueprint, activity_blueprint, admin_blueprint, users_blueprint, integrations_blueprint
    )
    app.register_blueprint(main_blueprint)
    app.register_blueprint(costsheets_blueprint)
    app.register_blueprint(costsheet_import_blueprint)
    app.register_blueprint(costsheet_export_blueprint)
    app.register_blueprint(analytics_blueprint)
    app.register_blueprint(activity_blueprint)
    app.register_blueprint(admin_blueprint)
    app.register_blueprint(users_blueprint)
    app.register_blueprint(integrations_blueprint)

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'status': 'error', 'message': 'Not found'}), 404

    @app.errorhandler(413)
    def too_large(e):
        return jsonify({'status': 'error', 'message': 'Upload too large'}), 413

    with app.app_context():
        db.create_all()

    return app
