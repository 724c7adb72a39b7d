import os

from flask import Flask

from config import config
from patientshare.extensions import db, migrate, jwt, limiter, cors
from patientshare.utils.encryption_util import encryptor
from patientshare.utils.error_handlers import register_error_handlers
from patientshare.commands import register_commands


def create_app(config_name=None):
    config_name = config_name or os.getenv('FLASK_CONFIG', 'default')
    config_class = config[config_name]

    app = Flask(__name__)
    app.config.from_object(config_class)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    limiter.init_app(app)
    cors.init_app(app,
                  origins=app.config['ALLOWED_ORIGINS'],
                  supports_credentials=True,
                  allow_headers=['Content-Type', 'Authorization', 'X-Requested-With'],
                  methods=['GET', 'POST', 'PUT', 'DELETE', 'OPTIONS'])

    # Initialize custom utilities
    encryptor.init_app(app)

    # Initialize app with config
    config_class.init_app(app)

    # Models must be imported before create_all / migrations see the metadata
    from patientshare import models  # noqa: F401

    # Register blueprints
    from patientshare.api import api_bp
    app.register_blueprint(api_bp, url_prefix='/api')

    # Register error handlers and commands
    register_error_handlers(app)
    register_commands(app)

    return app
