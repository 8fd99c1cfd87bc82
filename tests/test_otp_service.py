"""Issue/verify lifecycle of the OTP service against the in-memory store."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from services.delivery_service import Channel
from services.errors import (
    DeliveryError,
    ExpiredError,
    InvalidCodeError,
    NotFoundError,
    OTPError,
    TooManyAttemptsError,
    ValidationError,
)
from services.otp_service import OTPService, digest_code, generate_code
from services.otp_store import MemoryOTPStore
from conftest import T0, TEST_SECRET, FakeClock, RecordingDispatcher


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


def test_generate_code_is_fixed_width_digits():
    for _ in range(200):
        code = generate_code()
        assert len(code) == 6 and code.isdigit()
    assert len(generate_code(8)) == 8


def test_generate_code_is_zero_padded(monkeypatch):
    monkeypatch.setattr("services.otp_service.secrets.randbelow", lambda n: 42)
    assert generate_code() == "000042"


def test_digest_binds_principal():
    a = digest_code("482913", "a@example.com", TEST_SECRET)
    b = digest_code("482913", "b@example.com", TEST_SECRET)
    assert a != b
    assert a == digest_code("482913", "a@example.com", TEST_SECRET)
    assert "482913" not in a


def test_issue_stores_digest_only(otp_service, store, dispatcher):
    result = otp_service.issue("A@Example.com ", {"rank": "SSG", "last_name": "Diaz"})
    assert result.principal == "a@example.com"
    assert result.channel == Channel.EMAIL
    record = store.get("a@example.com")
    code = dispatcher.last_code
    assert record.code_digest == digest_code(code, "a@example.com", TEST_SECRET)
    assert code not in record.to_dict().values()
    assert record.attempts == 0
    assert record.context == {"rank": "SSG", "last_name": "Diaz"}


def test_issue_then_verify_succeeds_exactly_once(otp_service, dispatcher):
    otp_service.issue("lead@example.com", {"rank": "CPT"})
    code = dispatcher.last_code
    result = otp_service.verify("lead@example.com", code)
    assert result.context == {"rank": "CPT"}
    with pytest.raises(NotFoundError):
        otp_service.verify("lead@example.com", code)


def test_concrete_email_scenario(store, dispatcher):
    clock = FakeClock()
    service = OTPService(store, dispatcher, ttl_seconds=600, max_attempts=5, secret=TEST_SECRET,
                         fixed_code="482913", clock=clock)
    result = service.issue("a@example.com")
    record = store.get("a@example.com")
    assert record.code_digest == digest_code("482913", "a@example.com", TEST_SECRET)
    assert result.expires_at == T0 + 600

    clock.advance(60)
    assert service.verify("a@example.com", "482913").principal == "a@example.com"
    clock.advance(1)
    with pytest.raises(NotFoundError):
        service.verify("a@example.com", "482913")


def test_concrete_phone_scenario(otp_service, dispatcher, clock, store):
    otp_service.issue("+15555550123")
    code = dispatcher.last_code
    assert dispatcher.sent[-1]["channel"] == Channel.SMS
    for _ in range(5):
        clock.advance(10)
        with pytest.raises(InvalidCodeError):
            otp_service.verify("+15555550123", _wrong(code))
    clock.advance(10)
    with pytest.raises(TooManyAttemptsError):
        otp_service.verify("+15555550123", code)
    assert store.get("+15555550123") is None
    with pytest.raises(NotFoundError):
        otp_service.verify("+15555550123", code)


def test_wrong_code_increments_attempts(otp_service, dispatcher, store):
    otp_service.issue("lead@example.com")
    code = dispatcher.last_code
    with pytest.raises(InvalidCodeError):
        otp_service.verify("lead@example.com", _wrong(code))
    assert store.get("lead@example.com").attempts == 1


def test_expired_code_is_rejected_and_removed(otp_service, dispatcher, clock, store):
    otp_service.issue("lead@example.com")
    code = dispatcher.last_code
    clock.advance(601)
    with pytest.raises(ExpiredError):
        otp_service.verify("lead@example.com", code)
    assert store.get("lead@example.com") is None


def test_second_issue_invalidates_first(otp_service, dispatcher):
    otp_service.issue("+15555550123")
    first = dispatcher.last_code
    otp_service.issue("+15555550123")
    second = dispatcher.last_code
    if first != second:
        with pytest.raises(InvalidCodeError):
            otp_service.verify("+15555550123", first)
    otp_service.verify("+15555550123", second)


def test_reissue_resets_attempts(otp_service, dispatcher, store):
    otp_service.issue("lead@example.com")
    with pytest.raises(InvalidCodeError):
        otp_service.verify("lead@example.com", _wrong(dispatcher.last_code))
    otp_service.issue("lead@example.com")
    assert store.get("lead@example.com").attempts == 0


@pytest.mark.parametrize("principal", ["", "not-an-email", "user@nodot", "12345", "+0123456789"])
def test_invalid_principal_has_no_side_effects(otp_service, store, dispatcher, principal):
    with pytest.raises(ValidationError):
        otp_service.issue(principal)
    assert store._records == {}
    assert dispatcher.sent == []


@pytest.mark.parametrize("code", ["", "12345", "1234567", "12a456"])
def test_malformed_code_is_validation_error(otp_service, dispatcher, store, code):
    otp_service.issue("lead@example.com")
    with pytest.raises(ValidationError):
        otp_service.verify("lead@example.com", code)
    assert store.get("lead@example.com").attempts == 0


def test_phone_principal_is_normalized(otp_service, store):
    result = otp_service.issue("+1 (555) 555-0123")
    assert result.principal == "+15555550123"
    assert store.get("+15555550123") is not None


def test_delivery_failure_keeps_verifiable_record(store, clock):
    failing = RecordingDispatcher(fail=True)
    service = OTPService(store, failing, ttl_seconds=600, secret=TEST_SECRET, fixed_code="123456", clock=clock)
    with pytest.raises(DeliveryError):
        service.issue("lead@example.com")
    assert store.get("lead@example.com") is not None
    assert service.verify("lead@example.com", "123456").principal == "lead@example.com"


def test_fixed_code_ignored_outside_dev(monkeypatch, store, dispatcher, clock):
    monkeypatch.setenv("ENV", "production")
    service = OTPService(store, dispatcher, secret=TEST_SECRET, fixed_code="123456", clock=clock)
    assert service.fixed_code is None


def test_secret_required_outside_dev(monkeypatch, store, dispatcher):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.delenv("OTP_STORAGE_SECRET", raising=False)
    with pytest.raises(RuntimeError):
        OTPService(store, dispatcher)


def test_issue_sweeps_expired_records(otp_service, store, clock):
    otp_service.issue("old@example.com")
    clock.advance(700)
    otp_service.issue("new@example.com")
    assert store.get("old@example.com") is None


def test_concurrent_wrong_guesses_are_all_counted(dispatcher, clock):
    store = MemoryOTPStore()
    service = OTPService(store, dispatcher, max_attempts=20, secret=TEST_SECRET, clock=clock)
    service.issue("lead@example.com")
    wrong = _wrong(dispatcher.last_code)

    def guess(_):
        with pytest.raises(InvalidCodeError):
            service.verify("lead@example.com", wrong)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(guess, range(12)))
    assert store.get("lead@example.com").attempts == 12


def test_record_consumed_by_another_request_is_not_found(otp_service, dispatcher, store, monkeypatch):
    otp_service.issue("lead@example.com")
    code = dispatcher.last_code
    original_get = store.get

    def get_then_race(principal):
        record = original_get(principal)
        store.delete(principal)
        return record

    monkeypatch.setattr(store, "get", get_then_race)
    with pytest.raises(NotFoundError):
        otp_service.verify("lead@example.com", code)


def test_racing_guesses_never_exceed_attempt_ceiling(dispatcher, clock, monkeypatch):
    store = MemoryOTPStore()
    service = OTPService(store, dispatcher, max_attempts=5, secret=TEST_SECRET, fixed_code="482913", clock=clock)
    service.issue("lead@example.com")
    barrier = threading.Barrier(20)
    original_get = store.get

    def get_then_wait(principal):
        record = original_get(principal)
        barrier.wait(timeout=10)
        return record

    monkeypatch.setattr(store, "get", get_then_wait)
    guesses = [f"{n:06d}" for n in range(1, 20)] + ["482913"]

    def guess(code):
        try:
            service.verify("lead@example.com", code)
        except OTPError as e:
            return e.kind
        return "ok"

    with ThreadPoolExecutor(max_workers=20) as pool:
        outcomes = list(pool.map(guess, guesses))
    evaluated = outcomes.count("invalid_code") + outcomes.count("ok")
    assert evaluated <= 5
    assert outcomes.count("ok") <= 1
    assert set(outcomes) <= {"invalid_code", "ok", "too_many_attempts", "not_found"}


def test_last_allowed_attempt_is_still_evaluated(store, dispatcher, clock):
    service = OTPService(store, dispatcher, max_attempts=5, secret=TEST_SECRET, fixed_code="482913", clock=clock)
    service.issue("lead@example.com")
    for _ in range(4):
        with pytest.raises(InvalidCodeError):
            service.verify("lead@example.com", "000000")
    assert service.verify("lead@example.com", "482913").principal == "lead@example.com"


def test_reissue_during_verify_keeps_the_new_code(store, dispatcher, clock, monkeypatch):
    service = OTPService(store, dispatcher, secret=TEST_SECRET, fixed_code="111111", clock=clock)
    service.issue("lead@example.com")
    original_get = store.get

    def get_then_reissue(principal):
        record = original_get(principal)
        monkeypatch.setattr(store, "get", original_get)
        service.fixed_code = "222222"
        service.issue(principal)
        return record

    monkeypatch.setattr(store, "get", get_then_reissue)
    with pytest.raises(NotFoundError):
        service.verify("lead@example.com", "111111")
    assert service.verify("lead@example.com", "222222").principal == "lead@example.com"
