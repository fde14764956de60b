import logging
import os

from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()

logger = logging.getLogger(__name__)


def _env_flag(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def create_app(test_config=None, storage=None):
    app = Flask(__name__)

    # 1. Secret Key (Security)
    app.secret_key = os.environ.get('SECRET_KEY', 'dev_secret_key_fallback')

    # 2. Database Configuration
    # Prioritize 'DATABASE_URL' from environment (Docker/Render)
    # Fallback to local SQLite if no URL is found
    database_url = os.environ.get('DATABASE_URL')

    if database_url:
        # SQLAlchemy requires 'postgresql://' instead of 'postgres://'
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)
        app.config['SQLALCHEMY_DATABASE_URI'] = database_url
    else:
        # Local Development Fallback
        app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///assessment_platform.db'

    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    # 3. Documents, sessions and logging
    app.config['PDF_DIRECTORY'] = os.environ.get('PDF_DIRECTORY', os.path.join(os.getcwd(), 'pdfs'))
    app.config['LOG_LEVEL'] = os.environ.get('LOG_LEVEL', 'INFO')
    app.config['SESSION_COOKIE_SECURE'] = os.environ.get('FLASK_ENV') == 'production'
    app.config['SESSION_COOKIE_HTTPONLY'] = True
    app.config['SEED_DEMO_DATA'] = _env_flag('SEED_DEMO_DATA')

    if test_config:
        app.config.update(test_config)
        if 'SECRET_KEY' in test_config:
            app.secret_key = test_config['SECRET_KEY']

    logging.getLogger(__name__).setLevel(app.config['LOG_LEVEL'])
    os.makedirs(app.config['PDF_DIRECTORY'], exist_ok=True)

    # 4. Initialize Plugins
    db.init_app(app)
    migrate.init_app(app, db)

    from feedback_platform.storage import SqlStorage
    app.extensions['storage'] = storage if storage is not None else SqlStorage(db.session)

    # 5. Register Blueprints (Routes) and error handlers
    from feedback_platform.routes import routes
    from feedback_platform.errors import register_error_handlers
    app.register_blueprint(routes)
    register_error_handlers(app)

    # 6. Create Database Tables (if they don't exist)
    with app.app_context():
        db.create_all()
        if app.config['SEED_DEMO_DATA']:
            from feedback_platform.seed import seed_demo_data
            seed_demo_data(app.extensions['storage'], app.config['PDF_DIRECTORY'])

    logger.info("Application ready (database=%s)", app.config['SQLALCHEMY_DATABASE_URI'].split('://')[0])
    return app
