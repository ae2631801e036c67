import os, sys, pytest
# Ensure the backend directory is on path so 'prflow' and 'tests' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from prflow import create_app, get_db
from prflow.models.account import Base
# Import all model modules to ensure tables are registered before create_all
import prflow.models.purchase_request  # noqa: F401
import prflow.models.audit  # noqa: F401
from tests.test_lifecycle_helpers import RecordingNotificationSink


@pytest.fixture(scope='session', autouse=True)
def app_instance(tmp_path_factory):
    os.environ['DATABASE_URL'] = 'sqlite+pysqlite:///:memory:'
    app = create_app({
        'DOCUMENT_STORE_ROOT': str(tmp_path_factory.mktemp('documents')),
        'APP_BASE_URL': 'http://prflow.test',
        'NOTIFY_BACKEND': 'log',
    })
    app.extensions['prflow.notification_sink'] = RecordingNotificationSink()
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app


@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()


@pytest.fixture()
def app_context(app_instance):
    with app_instance.app_context():
        yield app_instance


@pytest.fixture()
def sent_mail(app_instance):
    """Messages captured by the recording sink during one test."""
    sink = app_instance.extensions['prflow.notification_sink']
    sink.sent.clear()
    return sink.sent
