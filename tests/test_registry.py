import pytest

from core.config import Settings
from models.enums import PaymentMethod
from services.gateways.manual_check_adapter import ManualCheckGateway
from services.gateways.paypal_adapter import PayPalGateway
from services.gateways.registry import GatewayRegistry, build_registry, normalize_method
from services.gateways.stripe_adapter import StripeGateway


class TestNormalizeMethod:
    """Test payment method normalization"""

    @pytest.mark.parametrize(
        "token,expected",
        [
            ("stripe", PaymentMethod.STRIPE),
            ("Stripe", PaymentMethod.STRIPE),
            ("ST", PaymentMethod.STRIPE),
            ("pp", PaymentMethod.PAYPAL),
            ("Apple Pay", PaymentMethod.APPLE_PAY),
            ("google-pay", PaymentMethod.GOOGLE_PAY),
            ("googlepay", PaymentMethod.GOOGLE_PAY),
            ("check", PaymentMethod.MANUAL_CHECK),
            (PaymentMethod.PAYPAL, PaymentMethod.PAYPAL),
        ],
    )
    def test_known_tokens(self, token, expected):
        """Test names, aliases and codes resolve"""
        assert normalize_method(token) == expected

    @pytest.mark.parametrize("token", ["XX", "bitcoin", ""])
    def test_unknown_falls_back_to_manual_check(self, token):
        """Test unrecognized tokens fall back to manual check"""
        assert normalize_method(token) == PaymentMethod.MANUAL_CHECK


class TestGatewayRegistry:
    """Test gateway lookup"""

    def test_resolve_registered(self, fake_gateway):
        """Test a registered gateway is returned for its method"""
        registry = GatewayRegistry()
        registry.register(PaymentMethod.STRIPE, fake_gateway)
        assert registry.resolve(PaymentMethod.STRIPE) is fake_gateway

    def test_resolve_falls_back(self):
        """Test a method with no gateway falls back to manual check"""
        registry = GatewayRegistry()
        manual = ManualCheckGateway()
        registry.register(PaymentMethod.MANUAL_CHECK, manual)
        assert registry.resolve(PaymentMethod.PAYPAL) is manual

    def test_resolve_without_fallback(self):
        """Test an empty registry refuses to resolve"""
        with pytest.raises(LookupError):
            GatewayRegistry().resolve(PaymentMethod.STRIPE)

    def test_build_registry_covers_every_method(self):
        """Test the default registry has a gateway per method"""
        registry = build_registry(Settings())
        assert set(registry.methods()) == set(PaymentMethod)
        assert isinstance(registry.resolve(PaymentMethod.STRIPE), StripeGateway)
        assert isinstance(registry.resolve(PaymentMethod.PAYPAL), PayPalGateway)
        assert registry.resolve(PaymentMethod.MANUAL_CHECK).require_approval is False
