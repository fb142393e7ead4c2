from datetime import datetime, timezone as dt_timezone
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase

from core.models import Account, Expense
from core.queries import get_payout_totals_by_year, get_tax_forms_required_for_accounts


User = get_user_model()


class TaxFormsRequiredQueryTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="payee", email="payee@example.com", password="pass")
        self.person = Account.objects.create(
            name="Payee", slug="payee", type=Account.AccountType.USER, owner_user=self.user
        )
        self.org = Account.objects.create(name="Acme", slug="acme", type=Account.AccountType.ORGANIZATION)
        self.collective = Account.objects.create(
            name="Babel", slug="babel", type=Account.AccountType.COLLECTIVE
        )

    def _expense(self, account, amount, year=2024, **overrides):
        fields = {
            "from_account": account,
            "user": self.user,
            "amount": Decimal(str(amount)),
            "status": Expense.Status.PAID,
            "type": Expense.ExpenseType.INVOICE,
            "payout_method": Expense.PayoutMethod.BANK_TRANSFER,
            "incurred_at": datetime(year, 3, 15, tzinfo=dt_timezone.utc),
        }
        fields.update(overrides)
        return Expense.objects.create(**fields)

    def test_general_threshold_is_cumulative(self):
        self._expense(self.person, 300)
        self.assertEqual(get_tax_forms_required_for_accounts(year=2024), set())

        self._expense(self.person, 300)
        self.assertEqual(get_tax_forms_required_for_accounts(year=2024), {self.person.id})

    def test_one_cent_below_threshold(self):
        self._expense(self.org, "599.99")
        self.assertEqual(get_tax_forms_required_for_accounts(year=2024), set())

    def test_paypal_uses_its_own_threshold(self):
        self._expense(self.org, 19999, payout_method=Expense.PayoutMethod.PAYPAL)
        self.assertEqual(get_tax_forms_required_for_accounts(year=2024), set())

        self._expense(self.org, 1, payout_method=Expense.PayoutMethod.PAYPAL)
        self.assertEqual(get_tax_forms_required_for_accounts(year=2024), {self.org.id})

    def test_totals_are_split_by_payout_method(self):
        self._expense(self.org, 100, payout_method=Expense.PayoutMethod.PAYPAL)
        self._expense(self.org, 50)
        rows = list(get_payout_totals_by_year(year=2024))
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["from_account_id"], self.org.id)
        self.assertEqual(rows[0]["year"], 2024)
        self.assertEqual(rows[0]["paypal_total"], Decimal("100"))
        self.assertEqual(rows[0]["other_total"], Decimal("50"))

    def test_only_paid_invoices_count(self):
        self._expense(self.person, 1000, status=Expense.Status.APPROVED)
        self._expense(self.person, 1000, type=Expense.ExpenseType.RECEIPT)
        self.assertEqual(get_tax_forms_required_for_accounts(year=2024), set())

    def test_collectives_never_need_a_form(self):
        self._expense(self.collective, 5000)
        self.assertEqual(get_tax_forms_required_for_accounts(year=2024), set())

    def test_years_are_not_mixed(self):
        self._expense(self.person, 400, year=2023)
        self._expense(self.person, 400, year=2024)
        self.assertEqual(get_tax_forms_required_for_accounts(year=2024), set())
        self.assertEqual(get_tax_forms_required_for_accounts(year=None), set())

    def test_all_years(self):
        self._expense(self.person, 700, year=2022)
        self._expense(self.org, 700, year=2024)
        self.assertEqual(get_tax_forms_required_for_accounts(), {self.person.id, self.org.id})
        self.assertEqual(get_tax_forms_required_for_accounts(year=2022), {self.person.id})

    def test_account_ids_restrict_candidates(self):
        self._expense(self.person, 700)
        self._expense(self.org, 700)
        self.assertEqual(get_tax_forms_required_for_accounts([self.org.id], 2024), {self.org.id})
