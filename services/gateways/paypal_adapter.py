"""PayPal payment gateway adapter over the PayPal REST v2 API.

The first ``process`` call creates a checkout order and comes back pending
with an ``approval_url`` for the buyer. Once the buyer approves, resuming
the payment with ``paypal_order_id`` (or ``payer_id``) captures it.
"""
from decimal import Decimal
from typing import Any, Dict

import requests

from core.errors import ProcessorError
from models.enums import PaymentMethod, PaymentStatus
from models.payment import Payment
from services.gateways.port import AuditEntry, GatewayResult, PaymentGateway

PAYPAL_BASE_URLS = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "live": "https://api-m.paypal.com",
}

CAPTURE_STATUSES = {
    "COMPLETED": PaymentStatus.COMPLETED,
    "PENDING": PaymentStatus.PENDING_PAYMENT,
    "REFUNDED": PaymentStatus.REFUNDED,
    "PARTIALLY_REFUNDED": PaymentStatus.REFUNDED,
    "DECLINED": PaymentStatus.FAILED,
    "FAILED": PaymentStatus.FAILED,
}

ORDER_STATUSES = {
    "CREATED": PaymentStatus.PENDING_PAYMENT,
    "SAVED": PaymentStatus.PENDING_PAYMENT,
    "APPROVED": PaymentStatus.PENDING_PAYMENT,
    "PAYER_ACTION_REQUIRED": PaymentStatus.PENDING_PAYMENT,
    "COMPLETED": PaymentStatus.COMPLETED,
    "VOIDED": PaymentStatus.CANCELLED,
}


def _error_message(exc: requests.RequestException) -> str:
    response = getattr(exc, "response", None)
    if response is not None:
        try:
            body = response.json()
        except ValueError:
            body = {}
        message = body.get("message") or body.get("error_description")
        if message:
            return message
    return str(exc)


class PayPalGateway(PaymentGateway):
    method = PaymentMethod.PAYPAL

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        mode: str = "sandbox",
        return_url: str = "",
        cancel_url: str = "",
        timeout: float = 20,
        session: requests.Session | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = PAYPAL_BASE_URLS.get(mode, PAYPAL_BASE_URLS["sandbox"])
        self.return_url = return_url
        self.cancel_url = cancel_url
        self.timeout = timeout
        self.http = session or requests.Session()

    def _access_token(self) -> str:
        if not (self.client_id and self.client_secret):
            raise ProcessorError("PayPal credentials are not configured", code="missing_credentials")
        resp = self.http.post(
            f"{self.base_url}/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()["access_token"]

    def _headers(self, request_id: str | None = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
        }
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        return headers

    def _post(self, path: str, payload: Dict[str, Any], request_id: str | None = None) -> Dict[str, Any]:
        resp = self.http.post(
            f"{self.base_url}{path}", json=payload, headers=self._headers(request_id), timeout=self.timeout
        )
        resp.raise_for_status()
        return resp.json()

    def _get(self, path: str) -> Dict[str, Any]:
        resp = self.http.get(f"{self.base_url}{path}", headers=self._headers(), timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def process(self, payment: Payment, data: Dict[str, Any]) -> GatewayResult:
        paypal_order_id = data.get("paypal_order_id")
        if not paypal_order_id and data.get("payer_id"):
            paypal_order_id = (payment.meta or {}).get("paypal_order_id")
        try:
            if paypal_order_id:
                return self._capture(payment, paypal_order_id, data)
            return self._create_order(payment, data)
        except requests.RequestException as e:
            return GatewayResult.failed(_error_message(e))

    def _create_order(self, payment: Payment, data: Dict[str, Any]) -> GatewayResult:
        payload = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": payment.payment_number,
                    "custom_id": str(payment.order_id),
                    "amount": {"currency_code": payment.currency, "value": f"{payment.amount:.2f}"},
                }
            ],
            "application_context": {
                "return_url": data.get("return_url") or self.return_url,
                "cancel_url": data.get("cancel_url") or self.cancel_url,
            },
        }
        body = self._post("/v2/checkout/orders", payload, request_id=payment.payment_number)
        approval_url = next(
            (link["href"] for link in body.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        return GatewayResult(
            success=True,
            status=PaymentStatus.PENDING_PAYMENT,
            extra={"approval_url": approval_url, "paypal_order_id": body["id"]},
            details=(
                AuditEntry(
                    detail_type="paypal_order",
                    key="paypal_order_id",
                    value=body["id"],
                    data={"status": body.get("status"), "approval_url": approval_url},
                ),
            ),
        )

    def _capture(self, payment: Payment, paypal_order_id: str, data: Dict[str, Any]) -> GatewayResult:
        body = self._post(
            f"/v2/checkout/orders/{paypal_order_id}/capture",
            {},
            request_id=f"{payment.payment_number}-capture",
        )
        captures = [
            capture
            for unit in body.get("purchase_units", [])
            for capture in unit.get("payments", {}).get("captures", [])
        ]
        capture = captures[0] if captures else {}
        capture_status = capture.get("status") or body.get("status")
        audit = AuditEntry(
            detail_type="paypal_response",
            key="capture_id",
            value=capture.get("id"),
            data={"paypal_order_id": paypal_order_id, "status": capture_status, "payer_id": data.get("payer_id")},
        )
        status = CAPTURE_STATUSES.get(capture_status)
        if status is None or status == PaymentStatus.FAILED:
            return GatewayResult.failed(
                f"PayPal capture for order {paypal_order_id} is {capture_status}", details=(audit,)
            )
        return GatewayResult(
            success=True,
            status=status,
            transaction_id=capture.get("id"),
            extra={"paypal_order_id": paypal_order_id},
            details=(audit,),
        )

    def refund(self, payment: Payment, amount: Decimal) -> GatewayResult:
        if not payment.transaction_id:
            return GatewayResult.failed("Payment has no PayPal capture to refund")
        payload = {"amount": {"currency_code": payment.currency, "value": f"{Decimal(amount):.2f}"}}
        try:
            body = self._post(
                f"/v2/payments/captures/{payment.transaction_id}/refund",
                payload,
                request_id=f"{payment.payment_number}-refund",
            )
        except requests.RequestException as e:
            return GatewayResult.failed(_error_message(e))
        if body.get("status") not in ("COMPLETED", "PENDING"):
            return GatewayResult.failed(f"PayPal refund {body.get('id')} is {body.get('status')}")
        return GatewayResult(
            success=True,
            extra={"refund_id": body.get("id")},
            details=(
                AuditEntry(
                    detail_type="paypal_refund",
                    key="refund_id",
                    value=body.get("id"),
                    data={"amount": f"{Decimal(amount):.2f}", "state": body.get("status")},
                ),
            ),
        )

    def verify(self, payment: Payment) -> GatewayResult:
        try:
            if payment.transaction_id:
                body = self._get(f"/v2/payments/captures/{payment.transaction_id}")
                status = CAPTURE_STATUSES.get(body.get("status"))
            elif (payment.meta or {}).get("paypal_order_id"):
                body = self._get(f"/v2/checkout/orders/{payment.meta['paypal_order_id']}")
                status = ORDER_STATUSES.get(body.get("status"))
            else:
                return GatewayResult.failed("Payment details not found")
        except requests.RequestException as e:
            return GatewayResult.failed(_error_message(e))
        return GatewayResult(success=True, status=status, extra={"paypal_status": body.get("status")})
