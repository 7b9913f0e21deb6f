import pytest

from rmadesk.app import create_app
from rmadesk.errors import EmailDeliveryError
from rmadesk.notifications import NotificationService
from rmadesk.reference.repo import ContactRepo, ServiceCentreRepo, SettingsRepo
from rmadesk.rma.manager import RMAManager
from rmadesk.store import DocumentStore, get_connection
from rmadesk.web import SENDER_EXTENSION


class FakeSender:
    """Records messages instead of calling the email providers."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, message):
        if self.fail:
            raise EmailDeliveryError(
                "Email sending failed with both providers",
                details={"primary": "brevo: HTTP 500", "fallback": {"success": False}},
            )
        self.sent.append(message)
        return {"success": True, "provider": "fake", "message_id": f"msg-{len(self.sent)}"}


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def store():
    store = DocumentStore(get_connection(":memory:"))
    yield store
    store.close()


@pytest.fixture
def manager(store, sender):
    return RMAManager(store, NotificationService(sender), SettingsRepo(store))


@pytest.fixture
def contact(store):
    return ContactRepo(store).create({
        "company": "Example Retail Ltd",
        "name": "Jordan Lee",
        "email": "jordan@example.com",
        "phone": "+1 555 0123",
    })


@pytest.fixture
def centre(store):
    return ServiceCentreRepo(store).create({"name": "Centre1", "address": "1 Workshop Lane"})


@pytest.fixture
def app(tmp_path, sender):
    app = create_app({
        "TESTING": True,
        "DB_PATH": str(tmp_path / "test.sqlite"),
        "LOGIN_DISABLED": True,
        "SECRET_KEY": "test-secret",
    })
    app.extensions[SENDER_EXTENSION] = sender
    return app


@pytest.fixture
def client(app):
    return app.test_client()
