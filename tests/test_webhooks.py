import hashlib
import hmac

import pytest

from conftest import add_intent, add_order, provider_response, stored_intent, stored_order
from reconciler.errors import ValidationError
from reconciler.status import ProviderKind
from reconciler.webhooks import decode_body, parse_mercadopago, verify_mercadopago_signature

REQUEST_PATH = "reconciler.providers.base.requests.request"


@pytest.fixture
def pix_order():
    add_order("O1")
    add_intent("pix_1", "O1")


def pushinpay_reports(mocker, status, **fields):
    body = {"id": "pix_1", "status": status, **fields}
    return mocker.patch(REQUEST_PATH, return_value=provider_response(mocker, 200, body))


def test_pushinpay_paid_marks_order_and_notifies_once(client, dispatcher, pix_order, mocker):
    call = pushinpay_reports(mocker, "paid", value=1000, end_to_end_id="E1")
    payload = {"id": "pix_1", "status": "paid", "value": 1000, "end_to_end_id": "E1"}

    first = client.post("/webhooks/pushinpay", json=payload)
    replay = client.post("/webhooks/pushinpay", json=payload)

    assert first.status_code == 200
    assert first.json() == {"received": True, "order_id": "O1", "status": "paid", "changed": True}
    assert replay.status_code == 200
    assert replay.json()["changed"] is False
    assert call.call_args.args == ("GET", "https://api.pushinpay.com.br/api/transactions/pix_1")
    assert stored_order("O1").payment_status == "paid"
    dispatcher.dispatch.assert_called_once()
    notification = dispatcher.dispatch.call_args.args[0]
    assert notification.order_id == "O1"
    assert notification.customer_email == "ana@example.com"
    assert notification.language == "pt"


def test_pushinpay_claim_not_confirmed_by_provider_is_not_applied(client, dispatcher, pix_order, mocker):
    pushinpay_reports(mocker, "created")

    response = client.post("/webhooks/pushinpay", json={"id": "pix_1", "status": "paid"})

    assert response.status_code == 200
    assert response.json()["status"] == "pending"
    assert response.json()["changed"] is False
    assert stored_intent("pix_1").canonical_status == "pending"
    assert stored_order("O1").payment_status == "pending"
    dispatcher.dispatch.assert_not_called()


def test_pushinpay_provider_outage_asks_for_retry(client, pix_order, mocker):
    mocker.patch(REQUEST_PATH, return_value=provider_response(mocker, 503, {"message": "down"}))

    response = client.post("/webhooks/pushinpay", json={"id": "pix_1", "status": "paid"})

    assert response.status_code == 502
    assert stored_intent("pix_1").canonical_status == "pending"


def test_pushinpay_form_encoded_payload(client, pix_order, mocker):
    pushinpay_reports(mocker, "expired")
    response = client.post(
        "/webhooks/pushinpay",
        content="id=pix_1&status=expired&value=1000",
        headers={"content-type": "application/x-www-form-urlencoded"},
    )

    assert response.status_code == 200
    assert stored_intent("pix_1").canonical_status == "expired"


def test_unknown_reference_is_acknowledged(client, dispatcher, pix_order, mocker):
    call = mocker.patch(REQUEST_PATH)

    response = client.post("/webhooks/pushinpay", json={"id": "someone-else", "status": "paid"})

    assert response.status_code == 200
    assert response.json()["received"] is True
    assert "order_id" not in response.json()
    assert stored_intent("pix_1").canonical_status == "pending"
    call.assert_not_called()
    dispatcher.dispatch.assert_not_called()


@pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b'{"status": "paid"}'])
def test_malformed_pushinpay_payload_is_rejected(client, body):
    response = client.post("/webhooks/pushinpay", content=body, headers={"content-type": "application/json"})

    assert response.status_code == 400


def test_dispatch_failure_does_not_fail_webhook(client, dispatcher, pix_order, mocker):
    pushinpay_reports(mocker, "paid")
    dispatcher.dispatch.side_effect = RuntimeError("smtp down")

    response = client.post("/webhooks/pushinpay", json={"id": "pix_1", "status": "paid"})

    assert response.status_code == 200
    assert stored_intent("pix_1").canonical_status == "paid"


def test_cancel_after_paid_is_ignored(client, dispatcher, pix_order, mocker):
    pushinpay_reports(mocker, "paid")
    client.post("/webhooks/pushinpay", json={"id": "pix_1", "status": "paid"})
    pushinpay_reports(mocker, "canceled")
    response = client.post("/webhooks/pushinpay", json={"id": "pix_1", "status": "canceled"})

    assert response.status_code == 200
    assert response.json()["status"] == "paid"
    assert stored_order("O1").payment_status == "paid"
    dispatcher.dispatch.assert_called_once()


def test_mercadopago_brasil_reads_status_from_provider(client, dispatcher, mocker):
    add_order("O1")
    add_intent("1234567890", "O1", kind=ProviderKind.QR_TRANSFER_CROSSBORDER)
    call = mocker.patch(REQUEST_PATH, return_value=provider_response(mocker, 200, {
        "id": 1234567890, "status": "approved", "transaction_amount": 10.0, "external_reference": "O1",
    }))

    response = client.post("/webhooks/mercadopago-brasil", json={
        "action": "payment.updated", "type": "payment", "data": {"id": "1234567890"},
    })

    assert response.status_code == 200
    assert response.json()["status"] == "paid"
    assert call.call_args.args == ("GET", "https://api.mercadopago.com/v1/payments/1234567890")
    assert call.call_args.kwargs["headers"]["Authorization"] == "Bearer APP_USR-br-test"
    dispatcher.dispatch.assert_called_once()


def test_mercadopago_checkout_resolves_by_external_reference(client, mocker):
    add_order("O7")
    add_intent("123-pref", "O7", kind=ProviderKind.REDIRECT_CHECKOUT)
    mocker.patch(REQUEST_PATH, return_value=provider_response(mocker, 200, {
        "id": 555, "status": "rejected", "transaction_amount": 1500, "external_reference": "O7",
    }))

    response = client.post("/webhooks/mercadopago?type=payment&data.id=555")

    assert response.status_code == 200
    assert response.json() == {"received": True, "order_id": "O7", "status": "cancelled", "changed": True}
    assert stored_intent("123-pref").canonical_status == "cancelled"
    assert stored_intent("123-pref").provider_reference == "123-pref"


def test_mercadopago_non_payment_topic_is_ignored(client, mocker):
    call = mocker.patch(REQUEST_PATH)

    response = client.post("/webhooks/mercadopago", json={"topic": "merchant_order", "resource": "https://x/1"})

    assert response.status_code == 200
    assert response.json()["message"] == "Notification type ignored"
    call.assert_not_called()


def test_mercadopago_payment_without_id_is_rejected(client):
    response = client.post("/webhooks/mercadopago-brasil", json={"type": "payment", "data": {}})

    assert response.status_code == 400


def test_mercadopago_provider_outage_asks_for_retry(client, mocker):
    add_order("O1")
    add_intent("42", "O1", kind=ProviderKind.QR_TRANSFER_CROSSBORDER)
    mocker.patch(REQUEST_PATH, return_value=provider_response(mocker, 502, {"message": "bad gateway"}))

    response = client.post("/webhooks/mercadopago-brasil", json={"type": "payment", "data": {"id": "42"}})

    assert response.status_code == 502
    assert stored_intent("42").canonical_status == "pending"


def test_mercadopago_payment_unknown_to_provider_is_acknowledged(client, mocker):
    mocker.patch(REQUEST_PATH, return_value=provider_response(mocker, 404, {"message": "not found"}))

    response = client.post("/webhooks/mercadopago-brasil", json={"type": "payment", "data": {"id": "77"}})

    assert response.status_code == 200


def _signature(secret, data_id, request_id, ts="1704908010"):
    manifest = f"id:{data_id};request-id:{request_id};ts:{ts};"
    digest = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    return f"ts={ts},v1={digest}"


def test_signed_mercadopago_webhook(client, monkeypatch, mocker):
    monkeypatch.setenv("MERCADOPAGO_WEBHOOK_SECRET", "whsec")
    add_order("O1")
    add_intent("42", "O1", kind=ProviderKind.QR_TRANSFER_CROSSBORDER)
    mocker.patch(REQUEST_PATH, return_value=provider_response(mocker, 200, {"id": 42, "status": "approved"}))

    good = client.post(
        "/webhooks/mercadopago-brasil",
        json={"type": "payment", "data": {"id": "42"}},
        headers={"x-signature": _signature("whsec", "42", "req-1"), "x-request-id": "req-1"},
    )
    bad = client.post(
        "/webhooks/mercadopago-brasil",
        json={"type": "payment", "data": {"id": "42"}},
        headers={"x-signature": _signature("other", "42", "req-1"), "x-request-id": "req-1"},
    )

    assert good.status_code == 200
    assert bad.status_code == 400
    assert bad.json()["detail"] == "Invalid signature"


def test_parse_mercadopago_variants():
    assert parse_mercadopago({"type": "payment", "data": {"id": 9}}, {}).payment_id == "9"
    assert parse_mercadopago({}, {"topic": "payment", "id": "10"}).payment_id == "10"
    legacy = parse_mercadopago({"topic": "payment", "resource": "https://api.mercadolibre.com/collections/11"}, {})
    assert legacy.payment_id == "11"
    assert parse_mercadopago({"type": "plan", "data": {"id": 1}}, {}).topic == "plan"


def test_decode_body_rejects_non_objects():
    assert decode_body(b"") == {}
    with pytest.raises(ValidationError):
        decode_body(b'"just a string"')


def test_signature_header_must_be_well_formed():
    with pytest.raises(ValidationError):
        verify_mercadopago_signature("s", "garbage", "r", "1")
    with pytest.raises(ValidationError):
        verify_mercadopago_signature("s", None, "r", "1")
