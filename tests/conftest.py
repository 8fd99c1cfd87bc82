import pytest
from fastapi.testclient import TestClient

from services.delivery_service import DeliveryDispatcher
from services.errors import DeliveryError
from services.otp_service import OTPService
from services.otp_store import MemoryOTPStore

T0 = 1_700_000_000.0
TEST_SECRET = "test-secret"


class FakeClock:
    def __init__(self, start: float = T0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingDispatcher(DeliveryDispatcher):
    """Captures outbound codes instead of talking to providers."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    def send(self, channel, principal, code, context=None, ttl_minutes=10):
        if self.fail:
            raise DeliveryError("provider rejected", channel=channel.value)
        self.sent.append({"channel": channel, "principal": principal, "code": code, "context": context})
        return True

    @property
    def last_code(self) -> str:
        return self.sent[-1]["code"]


@pytest.fixture(autouse=True)
def _test_env(monkeypatch):
    monkeypatch.setenv("ENV", "test")
    monkeypatch.delenv("OTP_FIXED_CODE", raising=False)
    monkeypatch.delenv("OTP_REQUIRE_DELIVERY", raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryOTPStore()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def otp_service(store, dispatcher, clock):
    return OTPService(store, dispatcher, ttl_seconds=600, max_attempts=5, secret=TEST_SECRET, clock=clock)


@pytest.fixture
def client(otp_service):
    from main import app
    from routes.otp_routes import get_otp_service

    app.dependency_overrides[get_otp_service] = lambda: otp_service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
