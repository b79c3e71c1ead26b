import hashlib
import hmac

import pytest
import requests

import payments


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body
        self.text = str(body)

    def json(self):
        return self._body


@pytest.fixture(autouse=True)
def credentials(monkeypatch):
    monkeypatch.setattr(payments, "RAZORPAY_KEY_ID", "rzp_test_key")
    monkeypatch.setattr(payments, "RAZORPAY_KEY_SECRET", "rzp_test_secret")


def test_to_paise():
    assert payments.to_paise(41.49) == 4149
    assert payments.to_paise(0.1 + 0.2) == 30


def test_create_gateway_order_posts_amount_in_paise(monkeypatch):
    sent = {}

    def fake_post(url, auth, json, timeout):
        sent.update(url=url, auth=auth, json=json)
        return FakeResponse(200, {"id": "order_1", "amount": json["amount"]})

    monkeypatch.setattr(payments.requests, "post", fake_post)
    data = payments.create_gateway_order(41.49, "INR", "order_abc")
    assert data["id"] == "order_1"
    assert sent["url"].endswith("/orders")
    assert sent["auth"] == ("rzp_test_key", "rzp_test_secret")
    assert sent["json"] == {"amount": 4149, "currency": "INR", "receipt": "order_abc", "payment_capture": 1}


def test_create_gateway_order_rejected(monkeypatch):
    monkeypatch.setattr(payments.requests, "post", lambda *a, **kw: FakeResponse(400, {"error": "bad"}))
    with pytest.raises(payments.PaymentGatewayError):
        payments.create_gateway_order(10, "INR", "order_abc")


def test_create_gateway_order_unreachable(monkeypatch):
    def boom(*args, **kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(payments.requests, "post", boom)
    with pytest.raises(payments.PaymentGatewayError):
        payments.create_gateway_order(10, "INR", "order_abc")


def test_verify_signature():
    signature = hmac.new(b"rzp_test_secret", b"order_1|pay_1", hashlib.sha256).hexdigest()
    assert payments.verify_signature("order_1", "pay_1", signature)
    assert not payments.verify_signature("order_1", "pay_2", signature)


def test_is_configured(monkeypatch):
    assert payments.is_configured()
    monkeypatch.setattr(payments, "RAZORPAY_KEY_SECRET", "")
    assert not payments.is_configured()


def test_verify_signature_non_ascii():
    assert not payments.verify_signature("order_1", "pay_1", "signé")
