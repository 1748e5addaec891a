"""Aggregate model imports for Alembic auto-detection."""

from app.models.farmer import Farmer, Season  # noqa: F401
from app.models.payment import Payment, PaymentRefCounter, PaymentStatus  # noqa: F401
from app.models.delivery import Delivery, DeliveryType  # noqa: F401
from app.models.activity_log import ActivityLog  # noqa: F401
