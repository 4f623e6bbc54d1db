import secrets
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from zoneinfo import ZoneInfo

from app.config.config import settings

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# No 0/O, 1/I
TRACKING_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def to_money(value) -> Decimal:
    """Round to centavos, half-up."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def as_utc(value: datetime | None) -> datetime | None:
    # sqlite hands back naive datetimes
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def local_now() -> datetime:
    return datetime.now(ZoneInfo(settings.TIMEZONE))


def local_today() -> date:
    return local_now().date()


def generate_tracking_number(prefix: str = "DEL", today: date | None = None) -> str:
    today = today or local_today()
    suffix = "".join(secrets.choice(TRACKING_ALPHABET) for _ in range(6))
    return f"{prefix}-{today:%Y%m%d}-{suffix}"


def enum_value(value):
    return getattr(value, "value", value)
