"""Payment records and their audit trail.

Status writes are compare-and-swap: a caller first claims a payment
(``claim_token`` set atomically), talks to the gateway without holding any
transaction open, then writes the new status guarded by its token and the
version it read. A stale writer matches zero rows and loses.
"""
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

import structlog
from pydantic_core import to_jsonable_python
from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from core.clock import Clock, utcnow
from core.config import settings
from core.db import SessionLocal, db_session
from core.errors import NotFoundError, NumberAllocationError
from models.enums import PaymentMethod, PaymentStatus, RESUMABLE_STATUSES, SUCCESSFUL_STATUSES
from models.order import Order
from models.payment import Payment
from models.payment_detail import PaymentDetail
from schemas.filters import PaymentFilter
from schemas.validation import parse_request
from services.numbers import NumberGenerator

logger = structlog.get_logger(__name__)

ZERO = Decimal("0.00")


def json_safe(value: Any) -> Any:
    """JSON-compatible copy of an audit or meta payload. Dates and Decimals become strings."""
    if value is None:
        return None
    return to_jsonable_python(value, fallback=str)


def successful_total(db: Session, order_id: int) -> Decimal:
    """Sum of completed and captured payment amounts for an order."""
    amounts = db.scalars(
        select(Payment.amount).where(Payment.order_id == order_id, Payment.status.in_(SUCCESSFUL_STATUSES))
    ).all()
    return sum((Decimal(a) for a in amounts), ZERO)


def has_successful_payments(db: Session, order_id: int) -> bool:
    return db.scalar(
        select(exists().where(Payment.order_id == order_id, Payment.status.in_(SUCCESSFUL_STATUSES)))
    )


class PaymentLedger:
    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        numbers: NumberGenerator | None = None,
        clock: Clock = utcnow,
        number_prefix: str = settings.PAYMENT_NUMBER_PREFIX,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self.numbers = numbers or NumberGenerator(clock=clock, max_attempts=settings.NUMBER_MAX_ATTEMPTS)
        self.number_prefix = number_prefix

    def create_payment(
        self,
        order: Order,
        method: PaymentMethod,
        amount: Decimal,
        data: Optional[Dict[str, Any]] = None,
    ) -> Payment:
        """Insert a pending payment, already claimed by the caller.

        The returned payment's ``claim_token`` must be passed to
        :meth:`transition` to record the gateway outcome.
        """
        data = data or {}
        meta = json_safe(data.get("meta"))
        for attempt in range(1, self.numbers.max_attempts + 1):
            number = None
            try:
                with db_session(self._session_factory) as db:
                    number = self.numbers.generate(self.number_prefix, lambda n: self._number_exists(db, n))
                    payment = Payment(
                        order_id=order.id,
                        payment_number=number,
                        method=method,
                        status=PaymentStatus.PENDING_PAYMENT,
                        amount=amount,
                        currency=order.currency,
                        transaction_id=data.get("transaction_id"),
                        authorization_code=data.get("authorization_code"),
                        meta=meta,
                        version=1,
                        claim_token=uuid4().hex,
                        created_at=self._clock(),
                        updated_at=self._clock(),
                    )
                    db.add(payment)
                return payment
            except IntegrityError:
                if not self._number_taken(number):
                    raise
                # Lost the race between the exists-check and the insert
                logger.info("payment_number_conflict", attempt=attempt)
        raise NumberAllocationError(self.number_prefix, self.numbers.max_attempts)

    def _number_exists(self, db: Session, number: str) -> bool:
        return db.scalar(select(exists().where(Payment.payment_number == number)))

    def _number_taken(self, number: str | None) -> bool:
        if number is None:
            return False
        with db_session(self._session_factory) as db:
            return self._number_exists(db, number)

    def claim(
        self,
        payment_id: int,
        statuses: Iterable[PaymentStatus],
        require_unrefunded: bool = False,
    ) -> str | None:
        """Take exclusive ownership of a payment for one gateway call.

        Returns the claim token, or None when the payment is not in one of
        ``statuses`` or another caller already holds it.
        """
        token = uuid4().hex
        stmt = update(Payment).where(
            Payment.id == payment_id,
            Payment.claim_token.is_(None),
            Payment.status.in_(list(statuses)),
        )
        if require_unrefunded:
            stmt = stmt.where(Payment.refunded_at.is_(None))
        with db_session(self._session_factory) as db:
            result = db.execute(
                stmt.values(claim_token=token, updated_at=self._clock()).execution_options(synchronize_session=False)
            )
        return token if result.rowcount == 1 else None

    def release(self, payment_id: int, token: str) -> None:
        with db_session(self._session_factory) as db:
            db.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.claim_token == token)
                .values(claim_token=None, updated_at=self._clock())
                .execution_options(synchronize_session=False)
            )

    def transition(self, db: Session, payment_id: int, token: str, status: PaymentStatus, **fields) -> bool:
        """Write a new status for a claimed payment and release the claim.

        Runs inside the caller's transaction. Returns False when the claim
        was lost, the version moved, or the transition would go backwards.
        """
        current = db.execute(
            select(Payment.status, Payment.version).where(Payment.id == payment_id, Payment.claim_token == token)
        ).one_or_none()
        if current is None:
            logger.warning("payment_claim_lost", payment_id=payment_id, status=status.value)
            return False
        if not current.status.can_transition_to(status):
            logger.warning(
                "payment_transition_rejected",
                payment_id=payment_id,
                current=current.status.value,
                target=status.value,
            )
            db.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.claim_token == token)
                .values(claim_token=None, updated_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            return False
        if "meta" in fields:
            fields["meta"] = json_safe(fields["meta"])
        result = db.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.claim_token == token, Payment.version == current.version)
            .values(
                status=status,
                version=current.version + 1,
                claim_token=None,
                updated_at=self._clock(),
                **fields,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def cancel_open_payments(self, db: Session, order_id: int) -> int:
        """Cancel unclaimed pending/authorized payments of an order."""
        result = db.execute(
            update(Payment)
            .where(
                Payment.order_id == order_id,
                Payment.claim_token.is_(None),
                Payment.status.in_(RESUMABLE_STATUSES),
            )
            .values(status=PaymentStatus.CANCELLED, version=Payment.version + 1, updated_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def append_detail(
        self,
        db: Session,
        payment_id: int,
        detail_type: str,
        key: str,
        value: str | None = None,
        data: Dict[str, Any] | None = None,
    ) -> PaymentDetail:
        detail = PaymentDetail(
            payment_id=payment_id,
            detail_type=detail_type,
            key=key,
            value=value,
            data=json_safe(data),
            created_at=self._clock(),
        )
        db.add(detail)
        return detail

    def record_detail(
        self,
        payment_id: int,
        detail_type: str,
        key: str,
        value: str | None = None,
        data: Dict[str, Any] | None = None,
    ) -> PaymentDetail:
        """Append one audit entry to an existing payment."""
        self.get_payment(payment_id)
        with db_session(self._session_factory) as db:
            return self.append_detail(db, payment_id, detail_type, key, value, data)

    def get_payment(self, payment_id: int) -> Payment:
        with db_session(self._session_factory) as db:
            payment = db.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError("Payment", payment_id)
        return payment

    def get_payment_by_number(self, payment_number: str) -> Payment:
        with db_session(self._session_factory) as db:
            payment = db.scalar(select(Payment).where(Payment.payment_number == payment_number))
        if payment is None:
            raise NotFoundError("Payment", payment_number)
        return payment

    def find_by_transaction_id(self, transaction_id: str) -> Optional[Payment]:
        with db_session(self._session_factory) as db:
            return db.scalar(select(Payment).where(Payment.transaction_id == transaction_id))

    def list_payments(
        self,
        order_id: int | None = None,
        user_id: int | None = None,
        status: PaymentStatus | None = None,
        method: PaymentMethod | None = None,
    ) -> List[Payment]:
        filters = parse_request(PaymentFilter, order_id=order_id, user_id=user_id, status=status, method=method)
        stmt = select(Payment)
        if filters.order_id is not None:
            stmt = stmt.where(Payment.order_id == filters.order_id)
        if filters.user_id is not None:
            stmt = stmt.join(Order, Order.id == Payment.order_id).where(Order.user_id == filters.user_id)
        if filters.status is not None:
            stmt = stmt.where(Payment.status == filters.status)
        if filters.method is not None:
            stmt = stmt.where(Payment.method == filters.method)
        with db_session(self._session_factory) as db:
            return list(db.scalars(stmt.order_by(Payment.created_at.desc(), Payment.id.desc())).all())

    def details(self, payment_id: int) -> List[PaymentDetail]:
        with db_session(self._session_factory) as db:
            return list(
                db.scalars(
                    select(PaymentDetail).where(PaymentDetail.payment_id == payment_id).order_by(PaymentDetail.id)
                ).all()
            )
