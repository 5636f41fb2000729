"""
Commission Engine

Pure commission arithmetic for partner lead sales. No I/O and no hidden
state: the same inputs always give the same CommissionCalculation.

Rate = base (partner override or platform default)
     + fresh sale bonus        (sold within FRESH_SALE_DAYS of upload)
     + high verification bonus (partner verification_pass_rate >= threshold)
     + partner volume bonus    (partner.bonus_commission_rate, if > 0)
capped at MAX_RATE. Amount = sale_price * rate, rounded to 4 decimals.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, List, Optional

from leadmarket.config import Settings, settings as default_settings
from leadmarket.core.exceptions import InvalidPartnerError
from leadmarket.models.marketplace import CommissionBonus

AMOUNT_PRECISION = Decimal("0.0001")


@dataclass(frozen=True)
class CommissionConfig:
    base_rate: Decimal
    fresh_sale_bonus: Decimal
    high_verification_bonus: Decimal
    volume_bonus: Decimal
    max_rate: Decimal
    holdback_days: int
    min_payout_amount: Decimal
    fresh_sale_days: int
    high_verification_threshold: Decimal
    volume_threshold: int

    @classmethod
    def from_settings(cls, s: Settings) -> "CommissionConfig":
        return cls(
            base_rate=s.COMMISSION_BASE_RATE,
            fresh_sale_bonus=s.COMMISSION_FRESH_SALE_BONUS,
            high_verification_bonus=s.COMMISSION_HIGH_VERIFICATION_BONUS,
            volume_bonus=s.COMMISSION_VOLUME_BONUS,
            max_rate=s.COMMISSION_MAX_RATE,
            holdback_days=s.COMMISSION_HOLDBACK_DAYS,
            min_payout_amount=s.COMMISSION_MIN_PAYOUT_AMOUNT,
            fresh_sale_days=s.COMMISSION_FRESH_SALE_DAYS,
            high_verification_threshold=s.COMMISSION_HIGH_VERIFICATION_THRESHOLD,
            volume_threshold=s.COMMISSION_VOLUME_THRESHOLD,
        )


COMMISSION_CONFIG = CommissionConfig.from_settings(default_settings)


@dataclass(frozen=True)
class CommissionPartnerInput:
    """Subset of Partner fields needed for commission calculation."""
    id: Any
    verification_pass_rate: Decimal = Decimal("0")
    bonus_commission_rate: Decimal = Decimal("0")
    base_commission_rate: Optional[Decimal] = None

    @classmethod
    def from_partner(cls, partner: Any) -> "CommissionPartnerInput":
        """Build from a Partner row (or any object with the same attributes)."""
        if partner is None:
            raise InvalidPartnerError("Partner is required to calculate commission")
        try:
            return cls(
                id=partner.id,
                verification_pass_rate=_to_decimal(partner.verification_pass_rate),
                bonus_commission_rate=_to_decimal(partner.bonus_commission_rate),
                base_commission_rate=(
                    _to_decimal(partner.base_commission_rate)
                    if partner.base_commission_rate is not None else None
                ),
            )
        except AttributeError as e:
            raise InvalidPartnerError(f"Partner is missing commission fields: {e}") from e


@dataclass(frozen=True)
class CommissionCalculation:
    rate: Decimal
    amount: Decimal
    bonuses: List[str] = field(default_factory=list)


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_between(start: datetime, end: datetime) -> int:
    """Whole days elapsed from start to end (floored, may be negative)."""
    return (as_utc(end) - as_utc(start)) // timedelta(days=1)


def calculate_commission(
    sale_price: Decimal,
    partner: CommissionPartnerInput,
    lead_created_at: datetime,
    sale_date: Optional[datetime] = None,
    config: CommissionConfig = COMMISSION_CONFIG,
) -> CommissionCalculation:
    """
    Calculate commission for a lead sale.

    Raises:
        InvalidPartnerError: partner is missing or malformed
    """
    if partner is None:
        raise InvalidPartnerError("Partner is required to calculate commission")
    if not isinstance(partner, CommissionPartnerInput):
        partner = CommissionPartnerInput.from_partner(partner)

    sale_date = sale_date or datetime.now(timezone.utc)
    sale_price = _to_decimal(sale_price)

    # Zero or missing override falls back to the platform rate
    rate = partner.base_commission_rate or config.base_rate
    bonuses: List[str] = []

    # 1. Fresh sale bonus
    if days_between(lead_created_at, sale_date) <= config.fresh_sale_days:
        rate += config.fresh_sale_bonus
        bonuses.append(CommissionBonus.FRESH_SALE.value)

    # 2. High verification rate bonus
    if partner.verification_pass_rate >= config.high_verification_threshold:
        rate += config.high_verification_bonus
        bonuses.append(CommissionBonus.HIGH_VERIFICATION.value)

    # 3. Volume bonus, configured per partner
    if partner.bonus_commission_rate > 0:
        rate += partner.bonus_commission_rate
        bonuses.append(CommissionBonus.VOLUME.value)

    rate = min(rate, config.max_rate)
    amount = (sale_price * rate).quantize(AMOUNT_PRECISION, rounding=ROUND_HALF_UP)

    return CommissionCalculation(rate=rate, amount=amount, bonuses=bonuses)


def calculate_payable_date(
    sale_date: Optional[datetime] = None,
    config: CommissionConfig = COMMISSION_CONFIG,
) -> datetime:
    """Date after which a commission may mature from pending to payable."""
    sale_date = as_utc(sale_date or datetime.now(timezone.utc))
    return sale_date + timedelta(days=config.holdback_days)
