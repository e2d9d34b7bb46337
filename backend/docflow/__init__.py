from flask import Flask, current_app
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import os

from .errors import WorkflowError

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def _truthy(value) -> bool:
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['DOCFLOW_AUTO_SEED'] = _truthy(os.getenv('DOCFLOW_AUTO_SEED', '0'))
    for key in ('DOCFLOW_FINANCE_THRESHOLD_CENTS', 'DOCFLOW_PERMISSION_CACHE_TTL'):
        if os.getenv(key):
            app.config[key] = os.getenv(key)

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

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
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    from .services.container import build_services
    app.extensions['docflow'] = build_services(SessionLocal, app.config)

    if app.config.get('DOCFLOW_AUTO_SEED'):
        _auto_seed(app)

    from .routes.iam import iam_bp
    from .routes.documents import docs_bp
    app.register_blueprint(iam_bp, url_prefix='/iam')
    app.register_blueprint(docs_bp, url_prefix='/documents')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    @app.errorhandler(WorkflowError)
    def handle_workflow_error(e: WorkflowError):
        if e.status_code >= 500:
            app.logger.error('Workflow configuration fault: %s', e.message)
        return {'error': e.to_dict()}, e.status_code

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                }
            }
            return payload, e.code
        # Unhandled exception
        app.logger.exception('Unhandled exception')
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    return app


def _auto_seed(app: Flask) -> None:
    """Create the schema and seed catalog, presets and the first admin (dev/demo setups)."""
    from .models.authz import Base
    from .services.bootstrap import bootstrap
    import docflow.models.audit  # noqa: F401
    import docflow.models.document  # noqa: F401
    Base.metadata.create_all(db_engine)
    session = SessionLocal()
    try:
        summary = bootstrap(session, app.extensions['docflow'].catalog)
        session.commit()
        app.logger.info('auto-seed: %s', summary)
    except Exception:
        session.rollback()
        raise
    finally:
        SessionLocal.remove()


def get_db():
    return SessionLocal()


def get_services():
    return current_app.extensions['docflow']
