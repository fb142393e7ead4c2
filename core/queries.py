from decimal import Decimal
from typing import Iterable, Optional, Set

from django.db.models import DecimalField, Q, Sum, Value
from django.db.models.functions import Coalesce, ExtractYear

from .models import Account, Expense


_ZERO = Value(Decimal("0.00"), output_field=DecimalField(max_digits=14, decimal_places=2))


def get_payout_totals_by_year(account_ids: Optional[Iterable[int]] = None, year: Optional[int] = None):
    """
    Paid invoice totals per (account, year), split between PayPal payouts and
    everything else.

    Only USER and ORGANIZATION accounts are taxable recipients; collectives
    are hosted and never receive a form themselves.
    """
    qs = Expense.objects.filter(
        status=Expense.Status.PAID,
        type=Expense.ExpenseType.INVOICE,
        from_account__type__in=[Account.AccountType.USER, Account.AccountType.ORGANIZATION],
    )
    if account_ids is not None:
        qs = qs.filter(from_account_id__in=list(account_ids))
    if year is not None:
        qs = qs.filter(incurred_at__year=year)

    return (
        qs.annotate(year=ExtractYear("incurred_at"))
        .values("from_account_id", "year")
        .annotate(
            paypal_total=Coalesce(
                Sum("amount", filter=Q(payout_method=Expense.PayoutMethod.PAYPAL)),
                _ZERO,
            ),
            other_total=Coalesce(
                Sum("amount", filter=~Q(payout_method=Expense.PayoutMethod.PAYPAL)),
                _ZERO,
            ),
        )
        .order_by("from_account_id", "year")
    )


def get_tax_forms_required_for_accounts(
    account_ids: Optional[Iterable[int]] = None,
    year: Optional[int] = None,
) -> Set[int]:
    """
    Ids of the accounts whose payouts for ``year`` (or any year when None)
    cross one of the tax form thresholds.
    """
    from taxes.services import amounts_require_tax_form  # local import to avoid circular deps

    required = set()
    for row in get_payout_totals_by_year(account_ids=account_ids, year=year):
        if amounts_require_tax_form(row["paypal_total"], row["other_total"]):
            required.add(row["from_account_id"])
    return required
