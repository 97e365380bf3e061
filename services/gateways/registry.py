"""Payment method normalization and the gateway registry.

The registry is populated once at startup; adding a payment method means
registering another gateway, not branching in the orchestrator.
"""
from typing import Dict

import structlog

from core.clock import Clock, utcnow
from core.config import Settings
from models.enums import PaymentMethod
from services.gateways.manual_check_adapter import ManualCheckGateway
from services.gateways.paypal_adapter import PayPalGateway
from services.gateways.port import PaymentGateway
from services.gateways.stripe_adapter import StripeGateway
from services.gateways.wallet_adapter import ApplePayGateway, GooglePayGateway

logger = structlog.get_logger(__name__)

FALLBACK_METHOD = PaymentMethod.MANUAL_CHECK

METHOD_ALIASES: Dict[str, PaymentMethod] = {
    **{method.value: method for method in PaymentMethod},
    "applepay": PaymentMethod.APPLE_PAY,
    "googlepay": PaymentMethod.GOOGLE_PAY,
    "check": PaymentMethod.MANUAL_CHECK,
    "manual": PaymentMethod.MANUAL_CHECK,
}


def normalize_method(token: str | PaymentMethod) -> PaymentMethod:
    """Map a method name ("stripe", "Apple Pay") or code ("ST") to a PaymentMethod.

    Unrecognized tokens fall back to manual check rather than failing. The
    fallback is logged because it can hide a misconfigured client.
    """
    if isinstance(token, PaymentMethod):
        return token
    raw = (token or "").strip()
    if len(raw) == 2:
        method = PaymentMethod.from_code(raw)
        if method is not None:
            return method
    method = METHOD_ALIASES.get(raw.lower().replace("-", "_").replace(" ", "_"))
    if method is None:
        logger.warning("payment_method_fallback", token=token, fallback=FALLBACK_METHOD.value)
        return FALLBACK_METHOD
    return method


class GatewayRegistry:
    def __init__(self) -> None:
        self._gateways: Dict[PaymentMethod, PaymentGateway] = {}

    def register(self, method: PaymentMethod, gateway: PaymentGateway) -> None:
        self._gateways[method] = gateway

    def resolve(self, method: PaymentMethod) -> PaymentGateway:
        gateway = self._gateways.get(method)
        if gateway is not None:
            return gateway
        fallback = self._gateways.get(FALLBACK_METHOD)
        if fallback is None:
            raise LookupError(f"No gateway registered for {method.value} and no {FALLBACK_METHOD.value} fallback")
        logger.warning("gateway_fallback", method=method.value, fallback=FALLBACK_METHOD.value)
        return fallback

    def methods(self) -> list[PaymentMethod]:
        return list(self._gateways)


def build_registry(settings: Settings, clock: Clock = utcnow) -> GatewayRegistry:
    """Register a gateway for every supported payment method."""
    registry = GatewayRegistry()
    registry.register(PaymentMethod.STRIPE, StripeGateway(api_key=settings.STRIPE_SECRET_KEY))
    registry.register(
        PaymentMethod.PAYPAL,
        PayPalGateway(
            client_id=settings.PAYPAL_CLIENT_ID,
            client_secret=settings.PAYPAL_CLIENT_SECRET,
            mode=settings.PAYPAL_MODE,
            return_url=settings.PAYPAL_RETURN_URL,
            cancel_url=settings.PAYPAL_CANCEL_URL,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        ),
    )
    registry.register(PaymentMethod.APPLE_PAY, ApplePayGateway(merchant_id=settings.APPLE_PAY_MERCHANT_ID))
    registry.register(PaymentMethod.GOOGLE_PAY, GooglePayGateway(merchant_id=settings.GOOGLE_PAY_MERCHANT_ID))
    registry.register(
        PaymentMethod.MANUAL_CHECK,
        ManualCheckGateway(require_approval=settings.MANUAL_CHECK_REQUIRE_APPROVAL, clock=clock),
    )
    return registry
