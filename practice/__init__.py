import os
from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix
from practice.extensions import db, bcrypt, migrate, limiter, cors
from practice.utils.audit_logger import audit_logger
from practice.utils.decorators import init_csrf
from practice.utils.error_handlers import register_error_handlers
from practice.commands import register_commands
from config import config


def create_app(config_name=None, overrides=None):
    app = Flask(__name__)

    config_name = config_name or os.environ.get('FLASK_CONFIG', 'default')
    config_class = config[config_name]
    app.config.from_object(config_class)
    if overrides:
        app.config.update(overrides)

    # Resolve logging and the token signing secret before anything can issue tokens
    config_class.init_app(app)

    # Only trust X-Forwarded-For for the number of proxies actually in front of the app
    if app.config.get('PROXY_FIX_X_FOR'):
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=app.config['PROXY_FIX_X_FOR'])

    # Initialize extensions
    db.init_app(app)
    bcrypt.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors.init_app(app, origins=app.config['ALLOWED_ORIGINS'], supports_credentials=True)

    # Initialize custom utilities
    audit_logger.init_app(app)
    init_csrf(app)

    # Register models with the metadata
    from practice import models  # noqa: F401

    # Register blueprints
    from practice.api import api_bp
    app.register_blueprint(api_bp, url_prefix='/api')

    # Register error handlers and commands
    register_error_handlers(app)
    register_commands(app)

    return app
