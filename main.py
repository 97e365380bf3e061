import structlog
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from core.clock import Clock, utcnow
from core.config import Settings, settings
from core.db import Base, SessionLocal, engine
from core.logging import configure_logging
from services.gateways.registry import build_registry
from services.numbers import NumberGenerator
from services.orchestrator import PaymentOrchestrator
from services.orders import OrderLedger
from services.payments import PaymentLedger

logger = structlog.get_logger(__name__)


def create_tables(bind: Engine = engine) -> None:
    """Create all tables (for dev/test; in prod use migrations)."""
    import models  # noqa: F401

    Base.metadata.create_all(bind=bind)


def build_orchestrator(
    session_factory: sessionmaker = SessionLocal,
    app_settings: Settings = settings,
    clock: Clock = utcnow,
) -> PaymentOrchestrator:
    """Wire the ledgers, number generator and gateway registry together."""
    numbers = NumberGenerator(clock=clock, max_attempts=app_settings.NUMBER_MAX_ATTEMPTS)
    orders = OrderLedger(
        session_factory=session_factory,
        numbers=numbers,
        clock=clock,
        number_prefix=app_settings.ORDER_NUMBER_PREFIX,
        default_currency=app_settings.DEFAULT_CURRENCY,
    )
    payments = PaymentLedger(
        session_factory=session_factory,
        numbers=numbers,
        clock=clock,
        number_prefix=app_settings.PAYMENT_NUMBER_PREFIX,
    )
    return PaymentOrchestrator(
        registry=build_registry(app_settings, clock=clock),
        orders=orders,
        payments=payments,
        session_factory=session_factory,
        clock=clock,
        allow_refunds=app_settings.ALLOW_REFUNDS,
    )


if __name__ == "__main__":
    configure_logging(settings)
    create_tables()
    orchestrator = build_orchestrator()
    logger.info(
        "ledger_ready",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        database=engine.url.render_as_string(hide_password=True),
        methods=[method.value for method in orchestrator.registry.methods()],
    )
