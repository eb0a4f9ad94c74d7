"""
Aging-bucket arithmetic for patient accounts.

``total_balance`` is kept equal to the sum of the aging buckets:
- credits (payments, outgoing transfers) drain the oldest bucket first
- debits (reversals, incoming transfers) land in the current 0-30 bucket

A credit larger than the positive bucket balances leaves the remainder as a
negative (credit) balance in the 0-30 bucket.
"""
from decimal import Decimal
from typing import Dict

from rcm.models.core import PatientAccount
from rcm.utils.decimal_utils import ZERO, money

CURRENT_BUCKET = "aging_0_30"
AGING_BUCKETS = ("aging_0_30", "aging_31_60", "aging_61_90", "aging_91_plus")
AGING_BUCKETS_OLDEST_FIRST = tuple(reversed(AGING_BUCKETS))
BALANCE_FIELDS = ("total_balance",) + AGING_BUCKETS


def bucket_totals(account: PatientAccount) -> Dict[str, Decimal]:
    return {bucket: money(getattr(account, bucket)) for bucket in AGING_BUCKETS}


def apply_credit(account: PatientAccount, amount: Decimal) -> Dict[str, Decimal]:
    """
    Reduce the account balance by ``amount``.

    Returns:
        Amount taken from each bucket
    """
    remaining = amount
    taken: Dict[str, Decimal] = {}
    for bucket in AGING_BUCKETS_OLDEST_FIRST:
        if remaining <= ZERO:
            break
        available = money(getattr(account, bucket))
        if available <= ZERO:
            continue
        portion = min(available, remaining)
        setattr(account, bucket, available - portion)
        taken[bucket] = portion
        remaining -= portion

    if remaining > ZERO:
        setattr(account, CURRENT_BUCKET, money(getattr(account, CURRENT_BUCKET)) - remaining)
        taken[CURRENT_BUCKET] = taken.get(CURRENT_BUCKET, ZERO) + remaining

    account.total_balance = money(account.total_balance) - amount
    return taken


def apply_debit(account: PatientAccount, amount: Decimal) -> None:
    """Increase the account balance by ``amount`` in the current bucket."""
    setattr(account, CURRENT_BUCKET, money(getattr(account, CURRENT_BUCKET)) + amount)
    account.total_balance = money(account.total_balance) + amount
