import unittest
from unittest.mock import MagicMock, patch

import requests

from core.errors import AuthError, GatewayError, InvalidResponseError, MissingRedirectError
from core.phonepe_client import PhonePeClient


def _resp(status_code=200, payload=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload if payload is not None else {}
    resp.text = ""
    return resp


class PhonePeClientTestCase(unittest.TestCase):
    def setUp(self):
        self.client = PhonePeClient(
            base_url="https://pg.example.com/apis/pg-sandbox/",
            client_id="cid",
            client_secret="secret",
            client_version=1,
            timeout=5,
        )

    def test_access_token_uses_form_encoding(self):
        with patch("core.phonepe_client.requests.post") as post_mock:
            post_mock.return_value = _resp(payload={"access_token": "tok-1", "expires_at": 1735000000})
            token = self.client.get_access_token()
        self.assertEqual(token, "tok-1")
        args, kwargs = post_mock.call_args
        self.assertEqual(args[0], "https://pg.example.com/apis/pg-sandbox/v1/oauth/token")
        self.assertEqual(kwargs["data"]["grant_type"], "client_credentials")
        self.assertEqual(kwargs["data"]["client_id"], "cid")
        self.assertEqual(kwargs["headers"]["Content-Type"], "application/x-www-form-urlencoded")

    def test_access_token_failures(self):
        with patch("core.phonepe_client.requests.post") as post_mock:
            post_mock.return_value = _resp(status_code=401, payload={"message": "bad credentials"})
            with self.assertRaises(AuthError):
                self.client.get_access_token()

            post_mock.return_value = _resp(payload={"token_type": "O-Bearer"})
            with self.assertRaises(AuthError):
                self.client.get_access_token()

            post_mock.side_effect = requests.ConnectionError("refused")
            with self.assertRaises(AuthError):
                self.client.get_access_token()

    def test_initiate_checkout(self):
        with patch("core.phonepe_client.requests.post") as post_mock:
            post_mock.return_value = _resp(payload={"orderId": "OMO1", "redirectUrl": "https://pay.example.com/r/1"})
            url = self.client.initiate_checkout(
                "TXN_1", 49900, "Payment for plan: Basic", "https://app.example.com/ok", token="tok-1"
            )
        self.assertEqual(url, "https://pay.example.com/r/1")
        args, kwargs = post_mock.call_args
        self.assertEqual(args[0], "https://pg.example.com/apis/pg-sandbox/checkout/v2/pay")
        self.assertEqual(kwargs["headers"]["Authorization"], "O-Bearer tok-1")
        body = kwargs["json"]
        self.assertEqual(body["merchantOrderId"], "TXN_1")
        self.assertEqual(body["amount"], 49900)
        self.assertEqual(body["paymentFlow"]["type"], "PG_CHECKOUT")
        self.assertEqual(body["paymentFlow"]["merchantUrls"]["redirectUrl"], "https://app.example.com/ok")

    def test_initiate_checkout_errors(self):
        with patch("core.phonepe_client.requests.post") as post_mock:
            post_mock.return_value = _resp(payload={"orderId": "OMO1"})
            with self.assertRaises(MissingRedirectError):
                self.client.initiate_checkout("TXN_1", 100, "d", "https://app/ok", token="t")

            post_mock.return_value = _resp(status_code=400, payload={"code": "BAD_REQUEST"})
            with self.assertRaises(GatewayError) as ctx:
                self.client.initiate_checkout("TXN_1", 100, "d", "https://app/ok", token="t")
            self.assertEqual(ctx.exception.details, {"code": "BAD_REQUEST"})

    def test_order_status_uses_last_payment_attempt(self):
        payload = {
            "orderId": "OMO1",
            "state": "COMPLETED",
            "amount": 49900,
            "paymentDetails": [
                {"transactionId": "OM-A", "paymentMode": "CARD", "amount": 49900, "state": "FAILED"},
                {"transactionId": "OM-B", "paymentMode": "UPI_QR", "amount": 49900, "state": "COMPLETED"},
            ],
        }
        with patch("core.phonepe_client.requests.get") as get_mock:
            get_mock.return_value = _resp(payload=payload)
            status = self.client.get_order_status("TXN_1", token="tok-1")
        self.assertEqual(get_mock.call_args[0][0], "https://pg.example.com/apis/pg-sandbox/checkout/v2/order/TXN_1/status")
        self.assertEqual(status.state, "COMPLETED")
        self.assertEqual(status.transaction_id, "OM-B")
        self.assertEqual(status.payment_mode, "UPI_QR")
        self.assertEqual(status.paid_amount, 49900)

    def test_order_status_pending_without_attempts(self):
        with patch("core.phonepe_client.requests.get") as get_mock:
            get_mock.return_value = _resp(payload={"state": "PENDING"})
            status = self.client.get_order_status("TXN_1", token="tok-1")
        self.assertEqual(status.state, "PENDING")
        self.assertIsNone(status.transaction_id)
        self.assertIsNone(status.paid_amount)

    def test_order_status_errors(self):
        with patch("core.phonepe_client.requests.get") as get_mock:
            get_mock.return_value = _resp(payload={"orderId": "OMO1"})
            with self.assertRaises(InvalidResponseError):
                self.client.get_order_status("TXN_1", token="t")

            get_mock.return_value = _resp(status_code=500, payload={"code": "INTERNAL"})
            with self.assertRaises(GatewayError):
                self.client.get_order_status("TXN_1", token="t")

            get_mock.side_effect = requests.Timeout("slow")
            with self.assertRaises(GatewayError):
                self.client.get_order_status("TXN_1", token="t")


if __name__ == "__main__":
    unittest.main()
