"""
PhonePe PG checkout v2 客户端。

每个方法只发一次请求，不做重试，也不读写数据库。
"""

from typing import Any, Dict, Optional

import requests

from core.config import cfg
from core.errors import AuthError, GatewayError, InvalidResponseError, MissingRedirectError
from core.events import log_event, E
from core.log import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api-preprod.phonepe.com/apis/pg-sandbox"


class OrderStatus:
    def __init__(self, state: str, transaction_id: str = None, payment_mode: str = None,
                 paid_amount: int = None):
        self.state = state
        self.transaction_id = transaction_id
        self.payment_mode = payment_mode
        self.paid_amount = paid_amount


def _response_payload(resp) -> Any:
    try:
        return resp.json()
    except ValueError:
        return str(resp.text or "")[:2000]


class PhonePeClient:
    def __init__(self, base_url: str = None, client_id: str = None, client_secret: str = None,
                 client_version: int = None, timeout: float = None):
        self.base_url = str(base_url or cfg.get("phonepe.base_url", DEFAULT_BASE_URL)).rstrip("/")
        self.client_id = str(client_id if client_id is not None else cfg.get("phonepe.client_id", ""))
        self.client_secret = str(client_secret if client_secret is not None else cfg.get("phonepe.client_secret", ""))
        self.client_version = int(client_version or cfg.get("phonepe.client_version", 1) or 1)
        self.timeout = float(timeout or cfg.get("phonepe.timeout_seconds", 15) or 15)
        self.expire_after = int(cfg.get("phonepe.expire_after_seconds", 1200) or 1200)

    @property
    def token_url(self) -> str:
        return f"{self.base_url}/v1/oauth/token"

    @property
    def pay_url(self) -> str:
        return f"{self.base_url}/checkout/v2/pay"

    def status_url(self, session_id: str) -> str:
        return f"{self.base_url}/checkout/v2/order/{session_id}/status"

    def _auth_headers(self, token: str) -> Dict[str, str]:
        return {
            "Authorization": f"O-Bearer {token}",
            "Content-Type": "application/json",
        }

    def get_access_token(self) -> str:
        form = {
            "client_id": self.client_id,
            "client_version": self.client_version,
            "client_secret": self.client_secret,
            "grant_type": "client_credentials",
        }
        try:
            resp = requests.post(
                self.token_url,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            log_event(logger, E.GATEWAY_TOKEN_FAIL, level="error", reason=f"network_error:{e}")
            raise AuthError(f"PhonePe token request failed: {e}")

        if not (200 <= int(resp.status_code or 0) < 300):
            payload = _response_payload(resp)
            log_event(logger, E.GATEWAY_TOKEN_FAIL, level="error", http=resp.status_code, payload=payload)
            raise AuthError(f"PhonePe token request returned HTTP {resp.status_code}", details=payload)

        data = _response_payload(resp)
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise AuthError("PhonePe token response missing access_token", details=data)
        log_event(logger, E.GATEWAY_TOKEN_FETCH, expires_at=data.get("expires_at", ""))
        return str(token)

    def initiate_checkout(self, session_id: str, amount_minor_units: int, description: str,
                          redirect_url: str, token: str = None) -> str:
        token = token or self.get_access_token()
        body = {
            "merchantOrderId": session_id,
            "amount": int(amount_minor_units),
            "expireAfter": self.expire_after,
            "paymentFlow": {
                "type": "PG_CHECKOUT",
                "message": description,
                "merchantUrls": {"redirectUrl": redirect_url},
            },
        }
        try:
            resp = requests.post(self.pay_url, json=body, headers=self._auth_headers(token), timeout=self.timeout)
        except requests.RequestException as e:
            log_event(logger, E.GATEWAY_CHECKOUT_FAIL, level="error", session_id=session_id, reason=str(e))
            raise GatewayError("Payment initiation failed", details=str(e))

        payload = _response_payload(resp)
        if not (200 <= int(resp.status_code or 0) < 300):
            log_event(logger, E.GATEWAY_CHECKOUT_FAIL, level="error", session_id=session_id,
                      http=resp.status_code, payload=payload)
            raise GatewayError("Payment initiation failed", details=payload)

        checkout_url = payload.get("redirectUrl") if isinstance(payload, dict) else None
        if not checkout_url:
            log_event(logger, E.GATEWAY_CHECKOUT_FAIL, level="error", session_id=session_id, reason="missing_redirect")
            raise MissingRedirectError("No redirect URL returned from PhonePe", details=payload)
        log_event(logger, E.GATEWAY_CHECKOUT_CREATE, session_id=session_id, amount=amount_minor_units,
                  order_id=payload.get("orderId", ""))
        return str(checkout_url)

    def get_order_status(self, session_id: str, token: str = None) -> OrderStatus:
        token = token or self.get_access_token()
        try:
            resp = requests.get(self.status_url(session_id), headers=self._auth_headers(token), timeout=self.timeout)
        except requests.RequestException as e:
            log_event(logger, E.GATEWAY_STATUS_FAIL, level="error", session_id=session_id, reason=str(e))
            raise GatewayError("Order status request failed", details=str(e))

        payload = _response_payload(resp)
        if not (200 <= int(resp.status_code or 0) < 300):
            log_event(logger, E.GATEWAY_STATUS_FAIL, level="error", session_id=session_id,
                      http=resp.status_code, payload=payload)
            raise GatewayError("Order status request failed", details=payload)

        state = payload.get("state") if isinstance(payload, dict) else None
        if not state:
            raise InvalidResponseError("Order status response missing state", details=payload)

        details = payload.get("paymentDetails") or []
        last: Optional[Dict] = details[-1] if isinstance(details, list) and details else None
        last = last if isinstance(last, dict) else {}
        paid_amount = last.get("amount")
        status = OrderStatus(
            state=str(state),
            transaction_id=last.get("transactionId"),
            payment_mode=last.get("paymentMode"),
            paid_amount=int(paid_amount) if paid_amount is not None else None,
        )
        log_event(logger, E.GATEWAY_STATUS_FETCH, session_id=session_id, state=status.state,
                  transaction_id=status.transaction_id or "")
        return status
