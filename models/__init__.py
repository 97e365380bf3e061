# Import models so that SQLAlchemy metadata includes them on app startup
from .order import Order  # noqa: F401
from .order_line import OrderLine  # noqa: F401
from .payment import Payment  # noqa: F401
from .payment_detail import PaymentDetail  # noqa: F401
