from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from io import StringIO
from unittest import mock

from django.contrib.auth import get_user_model
from django.core import mail
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase, TestCase
from django.test.utils import override_settings
from django.urls import reverse
from django.utils import timezone
from rest_framework.test import APIClient

from core.models import Account, AccountMember, Expense
from .helloworks import (
    HelloWorksClient,
    HelloWorksConfigurationError,
    HelloWorksError,
    WorkflowInstance,
    WorkflowStep,
)
from .models import LegalDocument
from .services import (
    TaxFormBatchResult,
    amounts_require_tax_form,
    find_accounts_that_need_to_be_sent_tax_form,
    generate_participant_name,
    get_admins_for_account,
    get_main_admin_to_contact,
    resolve_contact,
    save_document_status,
    send_helloworks_us_tax_form,
    send_tax_forms_for_year,
)


User = get_user_model()

ALLOW_ALL = lambda email: True  # noqa: E731


def make_user(email: str, name: str = "", legal_name: str = "", with_membership: bool = True) -> User:
    user = User.objects.create_user(username=email, email=email, password="pass1234")
    Account.objects.create(
        name=name or email.split("@")[0],
        legal_name=legal_name,
        slug=email.replace("@", "-").replace(".", "-"),
        type=Account.AccountType.USER,
        owner_user=user,
    )
    if with_membership:
        AccountMember.objects.create(account=user.personal_account, user=user, role=AccountMember.Role.ADMIN)
    return user


def make_organization(slug: str, admins=(), name: str = "", legal_name: str = "") -> Account:
    org = Account.objects.create(
        name=name or slug,
        legal_name=legal_name,
        slug=slug,
        type=Account.AccountType.ORGANIZATION,
    )
    for user in admins:
        AccountMember.objects.create(account=org, user=user, role=AccountMember.Role.ADMIN)
    return org


def pay(account: Account, user, amount, year: int = 2024, payout_method=Expense.PayoutMethod.OTHER, **extra) -> Expense:
    return Expense.objects.create(
        from_account=account,
        user=user,
        amount=Decimal(str(amount)),
        status=Expense.Status.PAID,
        type=Expense.ExpenseType.INVOICE,
        payout_method=payout_method,
        incurred_at=datetime(year, 6, 1, tzinfo=dt_timezone.utc),
        **extra,
    )


def make_instance(instance_id="inst_1", step="step_1", url="https://app.helloworks.com/i/inst_1"):
    raw = {"id": instance_id, "steps": [{"step": step, "url": url}], "status": "active"}
    return WorkflowInstance(id=instance_id, steps=[WorkflowStep(step=step, url=url)], raw=raw)


class FakeHelloWorksClient:
    def __init__(self, instance=None, link="https://app.helloworks.com/auth/inst_1", create_error=None, link_error=None):
        self.instance = instance or make_instance()
        self.link = link
        self.create_error = create_error
        self.link_error = link_error
        self.create_calls = []
        self.link_calls = []

    def create_instance(self, **kwargs):
        self.create_calls.append(kwargs)
        if self.create_error:
            raise self.create_error
        return self.instance

    def get_authenticated_link_for_step(self, *, instance_id, step):
        self.link_calls.append((instance_id, step))
        if self.link_error:
            raise self.link_error
        return self.link


class AmountsRequireTaxFormTests(SimpleTestCase):
    def test_general_threshold_alone_is_enough(self):
        self.assertTrue(amounts_require_tax_form(0, 600))
        self.assertTrue(amounts_require_tax_form(0, Decimal("600.00")))

    def test_paypal_threshold_alone_is_enough(self):
        self.assertTrue(amounts_require_tax_form(20000, 0))

    def test_one_unit_below_both_thresholds(self):
        self.assertFalse(amounts_require_tax_form(19999, 599))

    def test_paypal_amounts_do_not_count_toward_general_threshold(self):
        self.assertFalse(amounts_require_tax_form(5000, 0))

    @override_settings(US_TAX_FORM_THRESHOLD=Decimal("100"), US_TAX_FORM_THRESHOLD_FOR_PAYPAL=Decimal("1000"))
    def test_thresholds_can_be_overridden_in_settings(self):
        self.assertTrue(amounts_require_tax_form(0, 100))
        self.assertTrue(amounts_require_tax_form(1000, 0))
        self.assertFalse(amounts_require_tax_form(999, 99))


class FindAccountsThatNeedTaxFormTests(TestCase):
    def setUp(self):
        self.alice = make_user("alice@opencollective.com", name="Alice")
        self.bob = make_user("bob@opencollective.com", name="Bob")
        self.org = make_organization("acme", admins=[self.bob], legal_name="Acme LLC")
        pay(self.alice.personal_account, self.alice, 700)
        pay(self.org, self.bob, 1000)
        # Below threshold
        self.carol = make_user("carol@opencollective.com")
        pay(self.carol.personal_account, self.carol, 100)

    def _ids(self, year=2024):
        return {a.id for a in find_accounts_that_need_to_be_sent_tax_form(year)}

    def test_returns_accounts_above_threshold_without_document(self):
        self.assertEqual(self._ids(), {self.alice.personal_account.id, self.org.id})

    def test_empty_candidates_short_circuits(self):
        with mock.patch("taxes.services.get_tax_forms_required_for_accounts", return_value=set()):
            with self.assertNumQueries(0):
                self.assertEqual(find_accounts_that_need_to_be_sent_tax_form(2024), [])

    def test_is_idempotent_without_new_documents(self):
        self.assertEqual(self._ids(), self._ids())

    def test_requested_document_removes_account(self):
        save_document_status(self.org, 2024, LegalDocument.RequestStatus.REQUESTED, {})
        self.assertEqual(self._ids(), {self.alice.personal_account.id})

    def test_received_document_removes_account(self):
        save_document_status(self.org, 2024, LegalDocument.RequestStatus.RECEIVED, {})
        self.assertNotIn(self.org.id, self._ids())

    def test_error_document_is_requested_again(self):
        save_document_status(self.org, 2024, LegalDocument.RequestStatus.ERROR, {"error": {"message": "boom"}})
        self.assertIn(self.org.id, self._ids())

    def test_documents_from_other_years_are_ignored(self):
        save_document_status(self.org, 2023, LegalDocument.RequestStatus.RECEIVED, {})
        self.assertIn(self.org.id, self._ids())

    @override_settings(TAX_FORM_STALE_REQUEST_HOURS=24)
    def test_not_requested_document_only_requested_again_once_stale(self):
        doc = LegalDocument.objects.create(account=self.org, year=2024)
        self.assertNotIn(self.org.id, self._ids())

        LegalDocument.objects.filter(pk=doc.pk).update(updated_at=timezone.now() - timedelta(hours=25))
        self.assertIn(self.org.id, self._ids())


class ContactResolutionTests(TestCase):
    def setUp(self):
        self.admins = [
            make_user("first@opencollective.com", name="First"),
            make_user("second@opencollective.com", name="Second"),
            make_user("third@opencollective.com", name="Third"),
        ]
        self.org = make_organization("acme", admins=self.admins)

    def test_prefers_admin_with_latest_expense(self):
        pay(self.org, self.admins[0], 10, created_at=timezone.now() - timedelta(days=10))
        pay(self.org, self.admins[1], 10, created_at=timezone.now() - timedelta(days=1))
        self.assertEqual(resolve_contact(self.org, ALLOW_ALL), self.admins[1])

    def test_falls_back_to_first_admin_without_expense(self):
        self.assertEqual(resolve_contact(self.org, ALLOW_ALL), self.admins[0])

    def test_ignores_expenses_from_non_admins(self):
        outsider = make_user("outsider@opencollective.com")
        pay(self.org, outsider, 10)
        self.assertEqual(resolve_contact(self.org, ALLOW_ALL), self.admins[0])

    def test_ignores_expenses_from_other_accounts(self):
        other = make_organization("other", admins=[self.admins[2]])
        pay(other, self.admins[2], 10)
        self.assertEqual(resolve_contact(self.org, ALLOW_ALL), self.admins[0])

    def test_single_admin_is_returned_regardless_of_expenses(self):
        solo = make_user("solo@opencollective.com")
        org = make_organization("solo-org", admins=[solo])
        pay(org, self.admins[0], 10)
        self.assertEqual(resolve_contact(org, ALLOW_ALL), solo)

    def test_no_admin_returns_none(self):
        org = make_organization("orphan")
        self.assertIsNone(resolve_contact(org, ALLOW_ALL))
        self.assertIsNone(get_main_admin_to_contact(org, []))

    def test_members_are_not_admins(self):
        member = make_user("member@opencollective.com")
        org = make_organization("with-member")
        AccountMember.objects.create(account=org, user=member, role=AccountMember.Role.MEMBER)
        self.assertEqual(get_admins_for_account(org, ALLOW_ALL), [])

    def test_recipient_policy_filters_admins_and_logs(self):
        with self.assertLogs("taxes.services", level="INFO") as logs:
            admins = get_admins_for_account(self.org, lambda email: email.startswith("third"))
        self.assertEqual(admins, [self.admins[2]])
        self.assertEqual(len(logs.records), 2)
        self.assertIn("first@opencollective.com", logs.output[0])

    @override_settings(IS_PRODUCTION=False, INTERNAL_EMAIL_DOMAINS=["opencollective.com"])
    def test_default_policy_keeps_only_internal_emails_outside_production(self):
        external = make_user("someone@gmail.com")
        org = make_organization("mixed", admins=[external, self.admins[1]])
        self.assertEqual(get_admins_for_account(org), [self.admins[1]])

    @override_settings(IS_PRODUCTION=True)
    def test_default_policy_keeps_everyone_in_production(self):
        external = make_user("someone@gmail.com")
        org = make_organization("mixed", admins=[external, self.admins[1]])
        self.assertEqual(get_admins_for_account(org), [external, self.admins[1]])

    def test_personal_account_owner_is_admin_without_membership(self):
        owner = make_user("owner@opencollective.com", with_membership=False)
        profile = owner.personal_account
        self.assertFalse(AccountMember.objects.filter(account=profile).exists())
        self.assertEqual(get_admins_for_account(profile, ALLOW_ALL), [owner])
        self.assertEqual(resolve_contact(profile, ALLOW_ALL), owner)

    def test_personal_account_owner_is_listed_once(self):
        owner = make_user("owner@opencollective.com")
        self.assertEqual(get_admins_for_account(owner.personal_account, ALLOW_ALL), [owner])


class ParticipantNameTests(TestCase):
    def setUp(self):
        self.jane = make_user("jane@opencollective.com", name="Jane Doe")

    def test_legal_name_is_truncated_to_64_characters(self):
        org = make_organization("acme", admins=[self.jane], legal_name="L" * 80)
        name = generate_participant_name(org, self.jane)
        self.assertEqual(len(name), 64)
        self.assertTrue(name.startswith("L" * 63))

    def test_legal_name_wins(self):
        org = make_organization("acme", admins=[self.jane], legal_name="Acme LLC")
        self.assertEqual(generate_participant_name(org, self.jane), "Acme LLC")

    def test_personal_account_uses_account_name(self):
        self.assertEqual(generate_participant_name(self.jane.personal_account, self.jane), "Jane Doe")

    def test_personal_account_name_is_truncated(self):
        profile = self.jane.personal_account
        profile.name = "J" * 100
        profile.save()
        self.assertEqual(len(generate_participant_name(profile, self.jane)), 64)

    def test_organization_combines_slug_and_contact_name(self):
        org = make_organization("open-collective-foundation", admins=[self.jane])
        self.assertEqual(generate_participant_name(org, self.jane), "open-collective-foundation (Jane Doe)")

    def test_organization_parts_are_truncated_to_30_characters(self):
        profile = self.jane.personal_account
        profile.name = "N" * 45
        profile.save()
        org = make_organization("s" * 50, admins=[self.jane])
        name = generate_participant_name(org, self.jane)
        slug_part, user_part = name[:-1].split(" (")
        self.assertEqual(len(slug_part), 30)
        self.assertEqual(len(user_part), 30)
        self.assertLessEqual(len(name), 64)

    def test_combining_marks_count_toward_the_limit(self):
        org = make_organization("acme", admins=[self.jane], legal_name="\u1eb9\u0304" * 80)
        name = generate_participant_name(org, self.jane)
        self.assertEqual(len(name), 64)
        self.assertTrue(name.endswith("\u2026"))

        profile = self.jane.personal_account
        profile.name = "\u0e01\u0e48" * 40
        profile.save()
        self.assertEqual(len(generate_participant_name(profile, self.jane)), 64)

        org = make_organization("plain", admins=[self.jane])
        slug_part, user_part = generate_participant_name(org, self.jane)[:-1].split(" (")
        self.assertEqual(slug_part, "plain")
        self.assertEqual(len(user_part), 30)


class SaveDocumentStatusTests(TestCase):
    def setUp(self):
        self.user = make_user("jane@opencollective.com")
        self.account = self.user.personal_account

    def test_creates_a_single_document_per_account_and_year(self):
        save_document_status(self.account, 2024, LegalDocument.RequestStatus.REQUESTED, {})
        save_document_status(self.account, 2024, LegalDocument.RequestStatus.ERROR, {})
        save_document_status(self.account, 2023, LegalDocument.RequestStatus.REQUESTED, {})
        self.assertEqual(LegalDocument.objects.filter(account=self.account, year=2024).count(), 1)
        self.assertEqual(LegalDocument.objects.filter(account=self.account).count(), 2)

    def test_merges_data_instead_of_replacing_it(self):
        save_document_status(
            self.account, 2024, LegalDocument.RequestStatus.REQUESTED, {"helloWorks": {"instance": {"id": 1}}}
        )
        doc = save_document_status(
            self.account, 2024, LegalDocument.RequestStatus.REQUESTED, {"helloWorks": {"documentLink": "X"}}
        )
        doc.refresh_from_db()
        self.assertEqual(doc.data, {"helloWorks": {"instance": {"id": 1}, "documentLink": "X"}})
        self.assertEqual(doc.document_type, LegalDocument.DocumentType.US_TAX_FORM)

    def test_merge_data_replaces_lists(self):
        doc = save_document_status(
            self.account, 2024, LegalDocument.RequestStatus.REQUESTED, {"helloWorks": {"steps": [1, 2]}}
        )
        doc.merge_data({"helloWorks": {"steps": [3]}})
        doc.refresh_from_db()
        self.assertEqual(doc.data["helloWorks"]["steps"], [3])
        self.assertEqual(doc.request_status, LegalDocument.RequestStatus.REQUESTED)


class SendHelloWorksUsTaxFormTests(TestCase):
    def setUp(self):
        self.admin = make_user("a@x.com", name="Alex")
        self.org = make_organization("acme", admins=[self.admin], legal_name="Acme LLC")

    def _send(self, client, account=None, **kwargs):
        return send_helloworks_us_tax_form(
            client,
            account or self.org,
            2024,
            "https://example.com/callback",
            "wf_123",
            allowed_recipient=kwargs.pop("allowed_recipient", ALLOW_ALL),
            **kwargs,
        )

    def test_full_flow_with_link_fallback(self):
        client = FakeHelloWorksClient(link_error=HelloWorksError("nope", status_code=500))

        with self.assertLogs("taxes.services", level="WARNING") as logs:
            result = self._send(client)

        self.assertEqual(result, 1)
        self.assertIn("error getting authenticated link", logs.output[0])

        call = client.create_calls[0]
        self.assertEqual(call["callback_url"], "https://example.com/callback")
        self.assertEqual(call["workflow_id"], "wf_123")
        self.assertTrue(call["document_delivery"])
        self.assertTrue(call["delegated_authentication"])
        self.assertEqual(
            call["participants"],
            {"participant_swVuvW": {"type": "email", "value": "a@x.com", "fullName": "Acme LLC"}},
        )
        self.assertEqual(
            call["metadata"],
            {
                "accountType": "ORGANIZATION",
                "accountId": self.org.id,
                "adminEmails": "a@x.com",
                "userId": self.admin.id,
                "email": "a@x.com",
                "year": 2024,
            },
        )
        self.assertEqual(client.link_calls, [("inst_1", "step_1")])

        doc = LegalDocument.objects.get(account=self.org, year=2024)
        self.assertEqual(doc.request_status, LegalDocument.RequestStatus.REQUESTED)
        self.assertEqual(doc.data["helloWorks"]["instance"]["id"], "inst_1")
        self.assertEqual(doc.data["helloWorks"]["documentLink"], "https://app.helloworks.com/i/inst_1")

        self.assertEqual(len(mail.outbox), 1)
        email = mail.outbox[0]
        self.assertEqual(email.to, ["a@x.com"])
        self.assertIn("Acme LLC", email.subject)
        self.assertIn("Alex", email.body)
        self.assertIn("https://app.helloworks.com/i/inst_1", email.body)

    def test_uses_authenticated_link_when_available(self):
        client = FakeHelloWorksClient(link="https://app.helloworks.com/auth/signed?token=a&b=c")
        self._send(client)

        doc = LegalDocument.objects.get(account=self.org, year=2024)
        self.assertEqual(doc.data["helloWorks"]["documentLink"], "https://app.helloworks.com/auth/signed?token=a&b=c")
        self.assertIn("https://app.helloworks.com/auth/signed?token=a&b=c", mail.outbox[0].body)
        html_body, mimetype = mail.outbox[0].alternatives[0]
        self.assertEqual(mimetype, "text/html")
        self.assertIn("Acme LLC", html_body)

    def test_personal_account_uses_its_own_name(self):
        user = make_user("solo@x.com", name="Solo Person")
        client = FakeHelloWorksClient()
        self._send(client, account=user.personal_account)

        participant = client.create_calls[0]["participants"]["participant_swVuvW"]
        self.assertEqual(participant["fullName"], "Solo Person")
        self.assertIn("Solo Person", mail.outbox[0].subject)

    def test_personal_account_without_membership_is_contacted(self):
        user = make_user("solo@x.com", name="Solo Person", with_membership=False)
        client = FakeHelloWorksClient()
        result = self._send(client, account=user.personal_account)

        self.assertEqual(result, 1)
        self.assertEqual(mail.outbox[0].to, ["solo@x.com"])
        self.assertEqual(client.create_calls[0]["metadata"]["userId"], user.id)
        doc = LegalDocument.objects.get(account=user.personal_account, year=2024)
        self.assertEqual(doc.request_status, LegalDocument.RequestStatus.REQUESTED)

    def test_greeting_falls_back_when_profile_has_no_name(self):
        self.admin.personal_account.name = ""
        self.admin.personal_account.save()
        self._send(FakeHelloWorksClient())

        email = mail.outbox[0]
        self.assertNotIn("Hi ,", email.body)
        self.assertIn("Hi a@x.com,", email.body)
        self.assertIn("Hi a@x.com,", email.alternatives[0][0])

    def test_creation_failure_is_saved_as_error(self):
        client = FakeHelloWorksClient(create_error=RuntimeError("HelloWorks is down"))

        with self.assertLogs("taxes.services", level="ERROR"):
            result = self._send(client)

        self.assertIsInstance(result, LegalDocument)
        doc = LegalDocument.objects.get(account=self.org, year=2024)
        self.assertEqual(doc.request_status, LegalDocument.RequestStatus.ERROR)
        self.assertEqual(doc.data["error"]["message"], "HelloWorks is down")
        self.assertIn("RuntimeError", doc.data["error"]["stack"])
        self.assertEqual(len(mail.outbox), 0)

    def test_email_failure_keeps_instance_snapshot(self):
        client = FakeHelloWorksClient()
        with mock.patch("taxes.services.send_tax_form_request_email", side_effect=OSError("SMTP unavailable")):
            with self.assertLogs("taxes.services", level="ERROR"):
                self._send(client)

        doc = LegalDocument.objects.get(account=self.org, year=2024)
        self.assertEqual(doc.request_status, LegalDocument.RequestStatus.ERROR)
        self.assertEqual(doc.data["error"]["message"], "SMTP unavailable")
        self.assertEqual(doc.data["helloWorks"]["instance"]["id"], "inst_1")

    def test_no_contact_skips_without_document(self):
        org = make_organization("orphan", legal_name="Orphan Inc")
        client = FakeHelloWorksClient()

        with self.assertLogs("taxes.services", level="ERROR") as logs:
            result = self._send(client, account=org)

        self.assertIsNone(result)
        self.assertIn("No contact found", logs.output[0])
        self.assertEqual(client.create_calls, [])
        self.assertFalse(LegalDocument.objects.filter(account=org).exists())

    def test_filtered_out_contact_skips(self):
        client = FakeHelloWorksClient()
        result = self._send(client, allowed_recipient=lambda email: False)
        self.assertIsNone(result)
        self.assertEqual(client.create_calls, [])

    def test_error_document_goes_back_to_requested(self):
        save_document_status(self.org, 2024, LegalDocument.RequestStatus.ERROR, {"error": {"message": "old"}})
        self._send(FakeHelloWorksClient())

        doc = LegalDocument.objects.get(account=self.org, year=2024)
        self.assertEqual(doc.request_status, LegalDocument.RequestStatus.REQUESTED)
        self.assertEqual(doc.data["error"]["message"], "old")
        self.assertIn("instance", doc.data["helloWorks"])


class SendTaxFormsForYearTests(TestCase):
    def setUp(self):
        self.alice = make_user("alice@opencollective.com", name="Alice")
        self.bob = make_user("bob@opencollective.com", name="Bob")
        pay(self.alice.personal_account, self.alice, 700)
        pay(self.bob.personal_account, self.bob, 900)

    def test_requests_every_eligible_account(self):
        client = FakeHelloWorksClient()
        result = send_tax_forms_for_year(
            2024, client=client, callback_url="https://example.com/cb", workflow_id="wf", allowed_recipient=ALLOW_ALL
        )

        self.assertEqual(
            sorted(result.requested),
            sorted([self.alice.personal_account.id, self.bob.personal_account.id]),
        )
        self.assertEqual(result.total, 2)
        self.assertEqual(len(mail.outbox), 2)
        # Second pass has nothing left to do
        self.assertEqual(find_accounts_that_need_to_be_sent_tax_form(2024), [])

    def test_one_failing_account_does_not_stop_the_batch(self):
        accounts = [self.alice.personal_account, self.bob.personal_account]
        with mock.patch(
            "taxes.services.send_helloworks_us_tax_form",
            side_effect=[RuntimeError("unexpected"), 1],
        ) as send_mock:
            with self.assertLogs("taxes.services", level="ERROR"):
                result = send_tax_forms_for_year(2024, client=FakeHelloWorksClient(), accounts=accounts)

        self.assertEqual(send_mock.call_count, 2)
        self.assertEqual(result.failed, [self.alice.personal_account.id])
        self.assertEqual(result.requested, [self.bob.personal_account.id])

    def test_counts_errors_and_skips(self):
        orphan = make_organization("orphan")
        pay(orphan, self.alice, 5000)
        client = FakeHelloWorksClient(create_error=RuntimeError("down"))

        with self.assertLogs("taxes.services", level="ERROR"):
            result = send_tax_forms_for_year(2024, client=client, allowed_recipient=ALLOW_ALL)

        self.assertEqual(result.skipped, [orphan.id])
        self.assertEqual(len(result.failed), 2)
        self.assertEqual(result.requested, [])

    @override_settings(HELLOWORKS_API_KEY_ID="", HELLOWORKS_API_KEY_SECRET="")
    def test_missing_credentials_raise(self):
        with self.assertRaises(HelloWorksConfigurationError):
            send_tax_forms_for_year(2024)


class SendTaxFormsCommandTests(TestCase):
    def setUp(self):
        self.alice = make_user("alice@opencollective.com", name="Alice")
        pay(self.alice.personal_account, self.alice, 700, year=2024)

    def test_dry_run_lists_accounts(self):
        out = StringIO()
        with mock.patch("taxes.management.commands.send_tax_forms.send_tax_forms_for_year") as send_mock:
            call_command("send_tax_forms", "--year", "2024", "--dry-run", stdout=out)
        send_mock.assert_not_called()
        self.assertIn("1 account(s) need a tax form for 2024", out.getvalue())
        self.assertIn(self.alice.personal_account.slug, out.getvalue())

    @override_settings(TAX_FORM_WORKFLOW_ID="wf_123")
    def test_sends_forms(self):
        out = StringIO()
        batch = TaxFormBatchResult(year=2024, requested=[self.alice.personal_account.id])
        with mock.patch(
            "taxes.management.commands.send_tax_forms.send_tax_forms_for_year", return_value=batch
        ) as send_mock:
            call_command("send_tax_forms", "--year", "2024", stdout=out)
        self.assertEqual(send_mock.call_args[0][0], 2024)
        self.assertIn("1 requested, 0 skipped, 0 failed", out.getvalue())

    @override_settings(TAX_FORM_WORKFLOW_ID="")
    def test_requires_workflow_id(self):
        with self.assertRaises(CommandError):
            call_command("send_tax_forms", "--year", "2024", stdout=StringIO())

    def test_nothing_to_do(self):
        out = StringIO()
        call_command("send_tax_forms", "--year", "2019", stdout=out)
        self.assertIn("No account needs a tax form for 2019", out.getvalue())


class HelloWorksCallbackTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = make_user("jane@opencollective.com")
        self.account = self.user.personal_account
        self.document = save_document_status(
            self.account, 2024, LegalDocument.RequestStatus.REQUESTED, {"helloWorks": {"instance": {"id": "inst_1"}}}
        )
        self.url = reverse("taxes:helloworks_callback")

    def _payload(self, status="completed", account_id=None, year=2024):
        return {
            "id": "inst_1",
            "status": status,
            "metadata": {"accountId": str(account_id or self.account.id), "year": str(year)},
        }

    def test_completed_workflow_marks_document_received(self):
        resp = self.client.post(self.url, self._payload(), format="json")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["request_status"], LegalDocument.RequestStatus.RECEIVED)

        self.document.refresh_from_db()
        self.assertEqual(self.document.request_status, LegalDocument.RequestStatus.RECEIVED)
        self.assertEqual(self.document.data["helloWorks"]["instance"], {"id": "inst_1"})
        self.assertEqual(self.document.data["helloWorks"]["callback"]["status"], "completed")

    def test_other_statuses_are_only_recorded(self):
        resp = self.client.post(self.url, self._payload(status="viewed"), format="json")
        self.assertEqual(resp.status_code, 200)
        self.document.refresh_from_db()
        self.assertEqual(self.document.request_status, LegalDocument.RequestStatus.REQUESTED)
        self.assertEqual(self.document.data["helloWorks"]["callback"]["status"], "viewed")

    def test_unknown_document_returns_404(self):
        resp = self.client.post(self.url, self._payload(year=2020), format="json")
        self.assertEqual(resp.status_code, 404)

    def test_invalid_payload_returns_400(self):
        resp = self.client.post(self.url, {"id": "inst_1"}, format="json")
        self.assertEqual(resp.status_code, 400)

    @override_settings(HELLOWORKS_CALLBACK_SECRET="s3cret")
    def test_secret_is_checked_when_configured(self):
        resp = self.client.post(self.url, self._payload(), format="json")
        self.assertEqual(resp.status_code, 403)

        resp = self.client.post(self.url, self._payload(), format="json", HTTP_X_HELLOWORKS_SECRET="s3cret")
        self.assertEqual(resp.status_code, 200)


def _response(status_code=200, body=None, reason="OK"):
    response = mock.Mock()
    response.status_code = status_code
    response.reason = reason
    response.json.return_value = body
    return response


class HelloWorksClientTests(SimpleTestCase):
    def setUp(self):
        self.session = mock.Mock()
        self.client = HelloWorksClient("key_id", "key_secret", api_base="https://hw.test/v3", session=self.session)
        self.token_response = _response(body={"data": {"token": "jwt", "expires_at": 4102444800}})

    def test_requires_credentials(self):
        with self.assertRaises(HelloWorksConfigurationError):
            HelloWorksClient("", "secret")

    def test_create_instance_posts_flattened_form(self):
        self.session.request.side_effect = [
            self.token_response,
            _response(body={"data": {"id": "inst_9", "steps": [{"step": "s1", "url": "https://hw.test/s1"}]}}),
        ]

        instance = self.client.create_instance(
            callback_url="https://example.com/cb",
            workflow_id="wf_1",
            participants={"participant_swVuvW": {"type": "email", "value": "a@x.com", "fullName": "Acme LLC"}},
            metadata={"accountId": 3, "year": 2024},
        )

        self.assertEqual(instance.id, "inst_9")
        self.assertEqual(instance.steps, [WorkflowStep(step="s1", url="https://hw.test/s1")])
        self.assertEqual(instance.raw["id"], "inst_9")

        token_call, create_call = self.session.request.call_args_list
        self.assertEqual(token_call.args, ("GET", "https://hw.test/v3/token/key_id"))
        self.assertEqual(token_call.kwargs["headers"]["Authorization"], "Bearer key_secret")
        self.assertEqual(create_call.args, ("POST", "https://hw.test/v3/workflow_instances"))
        self.assertEqual(create_call.kwargs["headers"]["Authorization"], "Bearer jwt")
        form = create_call.kwargs["data"]
        self.assertEqual(form["workflow_id"], "wf_1")
        self.assertEqual(form["delegated_authentication"], "true")
        self.assertEqual(form["document_delivery"], "true")
        self.assertEqual(form["participants[participant_swVuvW][type]"], "email")
        self.assertEqual(form["participants[participant_swVuvW][value]"], "a@x.com")
        self.assertEqual(form["participants[participant_swVuvW][full_name]"], "Acme LLC")
        self.assertEqual(form["metadata[accountId]"], "3")
        self.assertEqual(form["metadata[year]"], "2024")

    def test_rejects_multiple_participants(self):
        with self.assertRaises(HelloWorksError):
            self.client.create_instance(
                callback_url="cb",
                workflow_id="wf",
                participants={"a": {}, "b": {}},
                metadata={},
            )
        self.session.request.assert_not_called()

    def test_authenticated_link_reuses_token(self):
        self.session.request.side_effect = [
            self.token_response,
            _response(body={"data": {"url": "https://hw.test/auth/1"}}),
            _response(body={"data": "https://hw.test/auth/2"}),
        ]

        first = self.client.get_authenticated_link_for_step(instance_id="inst_9", step="s1")
        second = self.client.get_authenticated_link_for_step(instance_id="inst_9", step="s2")

        self.assertEqual(first, "https://hw.test/auth/1")
        self.assertEqual(second, "https://hw.test/auth/2")
        self.assertEqual(self.session.request.call_count, 3)
        link_call = self.session.request.call_args_list[1]
        self.assertEqual(link_call.args, ("GET", "https://hw.test/v3/workflow_instances/inst_9/authenticated_link"))
        self.assertEqual(link_call.kwargs["params"], {"step": "s1"})

    def test_http_errors_raise_helloworks_error(self):
        self.session.request.side_effect = [
            self.token_response,
            _response(status_code=500, body={"message": "internal"}, reason="Server Error"),
        ]

        with self.assertRaises(HelloWorksError) as ctx:
            self.client.get_authenticated_link_for_step(instance_id="inst_9", step="s1")
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertIn("internal", str(ctx.exception))
