import os, sys, pytest
# Ensure the backend directory is on path so 'docflow' and 'tests' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
import docflow
from docflow import create_app, get_db
from docflow.models.authz import Base
# Import all model modules to ensure tables are registered before create_all
import docflow.models.audit  # noqa: F401
import docflow.models.document  # noqa: F401
from docflow.services.bootstrap import seed_catalog, seed_role_presets


def _seeded_app(database_url):
    app = create_app({
        'DATABASE_URL': database_url,
        'JWT_SECRET_KEY': 'test-secret-key-with-enough-length-for-hs256',
        'DOCFLOW_AUTO_SEED': False,
        'TESTING': True,
    })
    with app.app_context():
        session = get_db()
        Base.metadata.create_all(session.get_bind())
        services = app.extensions['docflow']
        seed_catalog(session, services.catalog)
        seed_role_presets(session, services.catalog)
        session.commit()
    return app


@pytest.fixture()
def app_instance():
    # Fresh in-memory database per test: workflow tests mutate shared documents and grants
    app = _seeded_app('sqlite+pysqlite:///:memory:')
    yield app
    docflow.SessionLocal.remove()


@pytest.fixture()
def app_context(app_instance):
    with app_instance.app_context():
        yield app_instance


@pytest.fixture()
def file_app_context(tmp_path):
    # File-backed database: one connection per thread, for real concurrent writers
    app = _seeded_app(f"sqlite+pysqlite:///{tmp_path / 'docflow.db'}")
    with app.app_context():
        yield app
    docflow.SessionLocal.remove()
    docflow.db_engine.dispose()


@pytest.fixture()
def services(app_context):
    return app_context.extensions['docflow']


@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()
