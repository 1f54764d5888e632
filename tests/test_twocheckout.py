"""2Checkout signing, IPN verification and REST error handling."""
import hashlib
import hmac
from urllib.parse import parse_qs, urlparse

import requests


def test_auth_header_hashes_merchant_and_timestamp(twocheckout):
    headers = twocheckout.auth_headers(timestamp=1700000000)
    expected = hmac.new(b"ipn-secret", b"MERCHANT1700000000", hashlib.sha256).hexdigest()
    assert headers["X-Avangate-Authentication"] == (
        f'code="MERCHANT" date="1700000000" hash="{expected}"'
    )


def test_buy_link_is_signed_with_buy_link_secret(twocheckout):
    url = twocheckout.generate_buy_link(
        product_id="PRO",
        customer_email="owner@example.com",
        customer_name="Olive Owner",
        currency="USD",
        return_url="https://app.test/billing/success",
        cancel_url="https://app.test/billing/cancel",
        external_reference="org_1_plan_2_123",
    )
    assert url.startswith("https://secure.example.test/checkout/buy?")
    query, signature_part = urlparse(url).query.rsplit("&signature=", 1)
    expected = hmac.new(b"buy-secret", query.encode(), hashlib.sha256).hexdigest()
    assert signature_part == expected
    params = parse_qs(query)
    assert params["merchant-id"] == ["MERCHANT"]
    assert params["external-reference"] == ["org_1_plan_2_123"]


def test_ipn_signature_round_trip(twocheckout):
    ipn = {"REFNO": "991", "MESSAGE_TYPE": "PAYMENT_RECEIVED", "EXTERNAL_REFERENCE": "org_1_plan_1_5"}
    signature = twocheckout.sign_ipn(ipn)
    assert twocheckout.verify_ipn(ipn, signature) is True
    assert twocheckout.verify_ipn({**ipn, "REFNO": "992"}, signature) is False
    assert twocheckout.verify_ipn(ipn, None) is False


def test_ipn_signature_ignores_key_order(twocheckout):
    a = {"B": "2", "A": "1"}
    b = {"A": "1", "B": "2"}
    assert twocheckout.sign_ipn(a) == twocheckout.sign_ipn(b)


def test_rest_call_success(twocheckout, stub_http):
    stub_http.respond(200, b'{"SubscriptionReference": "ABC", "Status": "ACTIVE"}')
    result = twocheckout.get_subscription("ABC")
    assert result == {"success": True, "data": {"SubscriptionReference": "ABC", "Status": "ACTIVE"}}
    method, url, kwargs = stub_http.calls[0]
    assert method == "GET"
    assert url == "https://api.example.test/rest/6.0/subscriptions/ABC/"
    assert kwargs["timeout"] == 5
    assert "X-Avangate-Authentication" in kwargs["headers"]


def test_rest_http_error_uses_provider_message(twocheckout, stub_http):
    stub_http.respond(404, b'{"message": "Subscription not found"}')
    assert twocheckout.cancel_subscription("NOPE") == {"success": False, "error": "Subscription not found"}
    assert stub_http.calls[0][0] == "DELETE"


def test_rest_http_error_without_json_body(twocheckout, stub_http):
    stub_http.respond(500, b"gateway exploded")
    result = twocheckout.update_subscription("ABC", {"RecurringEnabled": False})
    assert result["success"] is False
    assert "500" in result["error"]


def test_rest_network_failure(twocheckout, stub_http):
    stub_http.fail(requests.exceptions.ConnectionError("refused"))
    assert twocheckout.get_customer_subscriptions("a@b.c") == {
        "success": False, "error": "Payment provider unavailable",
    }
