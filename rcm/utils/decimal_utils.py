"""Decimal precision utilities for financial calculations."""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Union

from rcm.utils.errors import ValidationError
from rcm.utils.logger import get_logger

logger = get_logger(__name__)

# Standard precision for financial amounts (2 decimal places)
FINANCIAL_PRECISION = Decimal("0.01")
ZERO = Decimal("0.00")

Numeric = Union[str, int, float, Decimal]


def parse_decimal(value: Optional[Numeric], precision: Optional[Decimal] = None) -> Optional[Decimal]:
    """
    Parse a value to Decimal with proper precision handling.

    Args:
        value: Value to parse (string, int, float, or Decimal)
        precision: Optional precision to round to

    Returns:
        Decimal value or None if parsing fails

    Example:
        >>> parse_decimal("123.456", precision=Decimal("0.01"))
        Decimal('123.46')
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        try:
            # str() first so 0.1 does not become 0.1000000000000000055511151231257827
            result = Decimal(str(value))
        except (ValueError, InvalidOperation) as e:
            logger.warning("Failed to convert numeric value to Decimal", value=value, error=str(e))
            return None
    elif isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        try:
            result = Decimal(value)
        except (ValueError, InvalidOperation) as e:
            logger.warning("Failed to parse decimal string", value=value, error=str(e))
            return None
    else:
        logger.warning("Unsupported type for decimal parsing", value=value, type=type(value).__name__)
        return None

    if not result.is_finite():
        logger.warning("Non-finite decimal rejected", value=str(result))
        return None

    if precision is not None:
        try:
            result = result.quantize(precision, rounding=ROUND_HALF_UP)
        except (ValueError, InvalidOperation) as e:
            logger.warning("Failed to quantize decimal", value=result, precision=precision, error=str(e))
            return None

    return result


def parse_financial_amount(value: Optional[Numeric]) -> Optional[Decimal]:
    """
    Parse a financial amount with 2 decimal place precision.

    Example:
        >>> parse_financial_amount("1000")
        Decimal('1000.00')
    """
    return parse_decimal(value, precision=FINANCIAL_PRECISION)


def require_positive_amount(value: Optional[Numeric], field: str = "amount") -> Decimal:
    """
    Parse an amount that must be strictly positive.

    Raises:
        ValidationError: If the value is missing, unparseable, or not > 0
    """
    amount = parse_decimal(value)
    if amount is None:
        raise ValidationError(f"Invalid {field}", details={"field": field, "value": value})
    if not validate_decimal_precision(amount.normalize()):
        raise ValidationError(
            f"{field.capitalize()} has more than 2 decimal places",
            details={"field": field, "value": value},
        )
    amount = amount.quantize(FINANCIAL_PRECISION, rounding=ROUND_HALF_UP)
    if amount <= ZERO:
        raise ValidationError(f"{field.capitalize()} must be greater than zero", details={"field": field, "value": value})
    return amount


def money(value: Optional[Numeric]) -> Decimal:
    """Coerce a stored column value (possibly None) to a 2-place Decimal."""
    result = parse_financial_amount(value)
    return result if result is not None else ZERO


def validate_decimal_precision(value: Decimal, max_decimal_places: int = 2) -> bool:
    """
    Validate that a Decimal value has acceptable precision.

    Example:
        >>> validate_decimal_precision(Decimal("123.456"), max_decimal_places=2)
        False
    """
    if value is None:
        return False

    decimal_places = max(0, -value.as_tuple().exponent)
    return decimal_places <= max_decimal_places
