"""Money math for booking price splits.

Every amount is an integer in the currency's minor unit (cents for USD).
Rates are Decimal fractions: 0.12 means 12%.

- commission = gross * commission_rate, rounded half-up to the minor unit
- referral = gross * referral_rate, rounded half-up to the minor unit
- hosting fee is flat
- guide payout = gross - commission - hosting fee - referral

The guide payout is computed by subtraction, so it absorbs all rounding and
the four components always sum to the gross price exactly.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from app.core.exceptions import ValidationError

# Business rule: referrers never earn more than 2% of a booking
MAX_REFERRAL_RATE = Decimal("0.02")

# ISO-4217 minor unit exponents for the currencies we settle in
CURRENCY_EXPONENTS: dict[str, int] = {
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "CAD": 2,
    "AUD": 2,
    "NZD": 2,
    "JPY": 0,
}


@dataclass(frozen=True)
class PriceSplit:
    """Result of splitting a gross price between platform, referrer and guide."""

    gross_price: int
    commission_amount: int
    hosting_fee: int
    guide_payout: int
    referral_amount: int
    currency: str = "USD"

    @property
    def platform_revenue(self) -> int:
        return self.commission_amount + self.hosting_fee

    def as_dict(self) -> dict[str, int | str]:
        return {
            "gross_price": self.gross_price,
            "commission_amount": self.commission_amount,
            "hosting_fee": self.hosting_fee,
            "guide_payout": self.guide_payout,
            "referral_amount": self.referral_amount,
            "currency": self.currency,
        }


def currency_exponent(currency: str) -> int:
    """Get the minor unit exponent for a currency."""
    try:
        return CURRENCY_EXPONENTS[currency.upper()]
    except KeyError:
        raise ValidationError(f"Unsupported currency: {currency}")


def from_minor_units(amount: int, currency: str = "USD") -> Decimal:
    """Convert minor units back to a major-unit Decimal."""
    exponent = currency_exponent(currency)
    return (Decimal(amount) / (Decimal(10) ** exponent)).quantize(Decimal(1).scaleb(-exponent))


def percentage_of(amount: int, rate: Decimal) -> int:
    """Apply a fractional rate to a minor-unit amount, rounding half-up."""
    return int((Decimal(amount) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def validate_rates(
    gross_price: int,
    commission_rate: Decimal,
    hosting_fee: int,
    referral_rate: Decimal,
) -> None:
    """Guard: reject inputs outside the documented bounds."""
    if gross_price <= 0:
        raise ValidationError(f"Gross price must be positive, got {gross_price}")
    if not Decimal("0") <= commission_rate <= Decimal("1"):
        raise ValidationError(f"Commission rate must be between 0 and 1, got {commission_rate}")
    if hosting_fee < 0:
        raise ValidationError(f"Hosting fee cannot be negative, got {hosting_fee}")
    if not Decimal("0") <= referral_rate <= MAX_REFERRAL_RATE:
        raise ValidationError(
            f"Referral rate must be between 0 and {MAX_REFERRAL_RATE}, got {referral_rate}"
        )


def split_price(
    gross_price: int,
    commission_rate: Decimal,
    hosting_fee: int,
    referral_rate: Decimal = Decimal("0"),
    currency: str = "USD",
) -> PriceSplit:
    """Split a gross price into commission, hosting fee, referral and guide payout.

    Args:
        gross_price: Amount the customer pays, in minor units
        commission_rate: Platform commission as a fraction (0-1)
        hosting_fee: Flat platform fee in minor units
        referral_rate: Referrer share as a fraction (0-0.02)
        currency: ISO-4217 currency code

    Returns:
        PriceSplit: Components summing exactly to gross_price

    Raises:
        ValidationError: If inputs are out of range or deductions exceed the price
    """
    commission_rate = Decimal(str(commission_rate))
    referral_rate = Decimal(str(referral_rate))
    currency_exponent(currency)
    validate_rates(gross_price, commission_rate, hosting_fee, referral_rate)

    commission_amount = percentage_of(gross_price, commission_rate)
    referral_amount = percentage_of(gross_price, referral_rate)
    guide_payout = gross_price - commission_amount - hosting_fee - referral_amount

    if guide_payout < 0:
        raise ValidationError(
            f"Fees ({commission_amount + hosting_fee + referral_amount}) exceed "
            f"gross price ({gross_price})"
        )

    return PriceSplit(
        gross_price=gross_price,
        commission_amount=commission_amount,
        hosting_fee=hosting_fee,
        guide_payout=guide_payout,
        referral_amount=referral_amount,
        currency=currency.upper(),
    )


def refund_amount_for(gross_price: int, refund_percentage: int) -> int:
    """Refund owed for a percentage tier, rounded half-up to the minor unit."""
    return percentage_of(gross_price, Decimal(refund_percentage) / Decimal("100"))
