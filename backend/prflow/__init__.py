from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import logging
import os

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['DB_TIMEOUT_SECONDS'] = float(os.getenv('DB_TIMEOUT_SECONDS', '10'))
    app.config['DOCUMENT_STORE_ROOT'] = os.getenv('DOCUMENT_STORE_ROOT', os.path.abspath('uploads'))
    app.config['APP_BASE_URL'] = os.getenv('APP_BASE_URL', 'http://localhost:5173')
    app.config['NOTIFY_BACKEND'] = os.getenv('NOTIFY_BACKEND', 'log')
    app.config['SMTP_HOST'] = os.getenv('SMTP_HOST', 'localhost')
    app.config['SMTP_PORT'] = int(os.getenv('SMTP_PORT', '25'))
    app.config['SMTP_SENDER'] = os.getenv('SMTP_SENDER', 'it-approval@localhost')
    app.config['NOTIFY_TIMEOUT_SECONDS'] = float(os.getenv('NOTIFY_TIMEOUT_SECONDS', '10'))
    app.config['REQUEST_NUMBER_ATTEMPTS'] = int(os.getenv('REQUEST_NUMBER_ATTEMPTS', '5'))
    app.config['REQUIRE_QUOTATION_FOR_APPROVAL'] = _env_bool('REQUIRE_QUOTATION_FOR_APPROVAL', True)
    app.config['ALLOWED_DOCUMENT_EXTENSIONS'] = ('.pdf',)
    app.config['MAX_CONTENT_LENGTH'] = int(os.getenv('MAX_CONTENT_LENGTH', str(20 * 1024 * 1024)))
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    logging.basicConfig(level=app.config['LOG_LEVEL'])

    # Database
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    elif db_url.startswith('sqlite'):
        db_engine = create_engine(db_url, echo=False, future=True,
                                  connect_args={"timeout": app.config['DB_TIMEOUT_SECONDS']})
    else:
        db_engine = create_engine(db_url, echo=False, future=True, pool_timeout=app.config['DB_TIMEOUT_SECONDS'])
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    # Collaborators shared by every request handled by this app
    from .services.storage import LocalDocumentStore
    from .services.notifications import build_notification_sink
    app.extensions['prflow.document_store'] = LocalDocumentStore(app.config['DOCUMENT_STORE_ROOT'], base_url='/files')
    app.extensions['prflow.notification_sink'] = build_notification_sink(app.config)

    from .routes.auth import auth_bp
    from .routes.accounts import accounts_bp
    from .routes.requests import requests_bp
    from .routes.files import files_bp
    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(accounts_bp, url_prefix='/admin')
    app.register_blueprint(requests_bp, url_prefix='/requests')
    app.register_blueprint(files_bp, url_prefix='/files')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    @app.teardown_appcontext
    def remove_session(exc):  # type: ignore
        # each request starts with an empty identity map; rolls back anything uncommitted
        if SessionLocal is not None:
            SessionLocal.remove()

    # Unified error handler producing standardized JSON shape
    from .errors import WorkflowError, UpstreamError

    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, WorkflowError):
            _rollback_quietly()
            return e.to_payload(), e.status_code
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                }
            }
            return payload, e.code
        if isinstance(e, SQLAlchemyError):
            app.logger.exception('Repository failure')
            _rollback_quietly()
            err = UpstreamError('Repository unavailable')
            return err.to_payload(), err.status_code
        # Unhandled exception
        app.logger.exception('Unhandled exception')
        _rollback_quietly()
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    return app


def _rollback_quietly():
    if SessionLocal is None:
        return
    try:
        SessionLocal.rollback()
    except SQLAlchemyError:
        logging.getLogger(__name__).exception('Rollback failed')


def get_db():
    return SessionLocal()
