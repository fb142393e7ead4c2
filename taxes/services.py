import logging
import traceback
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Prefetch

from core.models import Account, Expense
from core.queries import get_tax_forms_required_for_accounts
from core.utils import deep_merge, is_email_internal

from .constants import (
    HELLOWORKS_PARTICIPANT_ID,
    PARTICIPANT_NAME_MAX_LENGTH,
    PARTICIPANT_NAME_PART_MAX_LENGTH,
    US_TAX_FORM_THRESHOLD,
    US_TAX_FORM_THRESHOLD_FOR_PAYPAL,
)
from .emails import send_tax_form_request_email
from .models import LegalDocument

logger = logging.getLogger(__name__)

RecipientPolicy = Callable[[str], bool]


def amounts_require_tax_form(paypal_total, other_total) -> bool:
    threshold = getattr(settings, "US_TAX_FORM_THRESHOLD", US_TAX_FORM_THRESHOLD)
    paypal_threshold = getattr(settings, "US_TAX_FORM_THRESHOLD_FOR_PAYPAL", US_TAX_FORM_THRESHOLD_FOR_PAYPAL)
    return Decimal(other_total) >= Decimal(threshold) or Decimal(paypal_total) >= Decimal(paypal_threshold)


def find_accounts_that_need_to_be_sent_tax_form(year: int) -> List[Account]:
    """
    All the accounts (users and organizations) that need to be sent a tax
    form for ``year``: their payouts cross a threshold and they either have
    no document yet or their document should be requested again.
    """
    account_ids = get_tax_forms_required_for_accounts(None, year)
    if not account_ids:
        return []

    accounts = Account.objects.filter(id__in=account_ids).prefetch_related(
        Prefetch(
            "legal_documents",
            queryset=LegalDocument.objects.filter(
                year=year,
                document_type=LegalDocument.DocumentType.US_TAX_FORM,
            ),
            to_attr="year_legal_documents",
        )
    )
    return [
        account
        for account in accounts
        if not account.year_legal_documents
        or any(doc.should_be_requested() for doc in account.year_legal_documents)
    ]


# --- Contact selection ---


def default_recipient_policy() -> RecipientPolicy:
    """Everyone in production; only internal addresses anywhere else."""
    if getattr(settings, "IS_PRODUCTION", False):
        return lambda email: True
    return is_email_internal


def get_admins_for_account(account: Account, allowed_recipient: Optional[RecipientPolicy] = None) -> list:
    if allowed_recipient is None:
        allowed_recipient = default_recipient_policy()

    admins = []
    for user in account.get_admin_users():
        if allowed_recipient(user.email):
            admins.append(user)
        else:
            # Keeps HelloWorks from ever notifying real users from dev/staging
            logger.info(
                "Tax form: skipping user %s (%s) for account #%s because this recipient is not allowed here",
                user.id,
                user.email,
                account.id,
            )
    return admins


def get_main_admin_to_contact(account: Account, admin_users: list):
    """
    Pick the admin to contact, as HelloWorks only supports one recipient.
    With several admins, prefer the one who most recently submitted an
    expense for this account, then fall back to the first admin listed.
    """
    if not admin_users:
        return None

    if len(admin_users) > 1:
        latest_expense = (
            Expense.objects.filter(
                from_account=account,
                user_id__in=[u.id for u in admin_users],
            )
            .order_by("-created_at", "-id")
            .first()
        )
        if latest_expense:
            for user in admin_users:
                if user.id == latest_expense.user_id:
                    return user

    return admin_users[0]


def resolve_contact(account: Account, allowed_recipient: Optional[RecipientPolicy] = None):
    return get_main_admin_to_contact(account, get_admins_for_account(account, allowed_recipient))


def _get_user_profile(user) -> Optional[Account]:
    try:
        return user.personal_account
    except Account.DoesNotExist:
        return None


def get_user_display_name(user) -> str:
    profile = _get_user_profile(user)
    if profile is not None and (profile.name or profile.legal_name):
        return profile.name or profile.legal_name
    return user.get_full_name() or user.email or user.get_username()


def _truncate(text: str, length: int) -> str:
    # Counts code points, combining marks included
    if len(text) <= length:
        return text
    return text[: length - 1] + "\u2026"


def generate_participant_name(account: Account, user) -> str:
    """
    Name shown to the signer in HelloWorks, at most 64 characters.

    Organizations signed by one of their admins get "<slug> (<admin name>)",
    each part cut to 30 characters.
    """
    if account.legal_name:
        return _truncate(account.legal_name, PARTICIPANT_NAME_MAX_LENGTH)
    if account.owner_user_id is not None and account.owner_user_id == user.id:
        return _truncate(account.name, PARTICIPANT_NAME_MAX_LENGTH)

    slug = _truncate(account.slug, PARTICIPANT_NAME_PART_MAX_LENGTH)
    user_name = _truncate(get_user_display_name(user), PARTICIPANT_NAME_PART_MAX_LENGTH)
    return f"{slug} ({user_name})"


# --- Persistence ---


@transaction.atomic
def save_document_status(account: Account, year: int, request_status: str, data: Optional[dict]) -> LegalDocument:
    document, _ = LegalDocument.objects.select_for_update().get_or_create(
        account=account,
        year=year,
        document_type=LegalDocument.DocumentType.US_TAX_FORM,
    )
    document.request_status = request_status
    document.data = deep_merge(document.data, data or {})
    document.save(update_fields=["request_status", "data", "updated_at"])
    return document


# --- Request flow ---


def send_helloworks_us_tax_form(
    client,
    account: Account,
    year: int,
    callback_url: str,
    workflow_id: str,
    allowed_recipient: Optional[RecipientPolicy] = None,
):
    """
    Request a US tax form from ``account`` for ``year`` through HelloWorks.

    Returns the email backend result when the request went out, None when
    the account has no admin to contact, and the ERROR LegalDocument when
    anything failed along the way.
    """
    admin_users = get_admins_for_account(account, allowed_recipient)
    main_user = get_main_admin_to_contact(account, admin_users)
    if not main_user:
        logger.error("No contact found for account #%s (@%s). Skipping tax form.", account.id, account.slug)
        return None

    participants = {
        HELLOWORKS_PARTICIPANT_ID: {
            "type": "email",
            "value": main_user.email,
            "fullName": generate_participant_name(account, main_user),
        },
    }

    try:
        instance = client.create_instance(
            callback_url=callback_url,
            workflow_id=workflow_id,
            document_delivery=True,
            # Also stops HelloWorks from sending its own email to the participant
            delegated_authentication=True,
            participants=participants,
            metadata={
                "accountType": account.type,
                "accountId": account.id,
                "adminEmails": ", ".join(u.email for u in admin_users),
                "userId": main_user.id,
                "email": main_user.email,
                "year": year,
            },
        )

        # Persisted before anything else so the instance is never lost
        document = save_document_status(
            account,
            year,
            LegalDocument.RequestStatus.REQUESTED,
            {"helloWorks": {"instance": instance.raw}},
        )

        step = instance.steps[0]
        document_link = step.url
        try:
            document_link = client.get_authenticated_link_for_step(instance_id=instance.id, step=step.step)
        except Exception as exc:
            logger.warning("Tax form: error getting authenticated link for %s: %s", instance.id, exc)

        document.merge_data({"helloWorks": {"documentLink": document_link}})

        recipient_name = get_user_display_name(main_user)
        account_name = account.legal_name or account.name or account.slug
        return send_tax_form_request_email(
            main_user.email,
            document_link=document_link,
            recipient_name=recipient_name,
            account_name=account_name,
        )
    except Exception as exc:
        logger.exception("Failed to initialize tax form for account #%s (%s)", account.id, main_user.email)
        return save_document_status(
            account,
            year,
            LegalDocument.RequestStatus.ERROR,
            {
                "error": {
                    "message": str(exc),
                    "stack": traceback.format_exc(),
                }
            },
        )


@dataclass
class TaxFormBatchResult:
    year: int
    requested: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.requested) + len(self.skipped) + len(self.failed)


def send_tax_forms_for_year(
    year: int,
    *,
    client=None,
    callback_url: Optional[str] = None,
    workflow_id: Optional[str] = None,
    allowed_recipient: Optional[RecipientPolicy] = None,
    accounts: Optional[List[Account]] = None,
) -> TaxFormBatchResult:
    """
    Request tax forms from every eligible account, one account at a time.
    A failure on one account never stops the batch.
    """
    if client is None:
        from .helloworks import get_helloworks_client

        client = get_helloworks_client()
    callback_url = callback_url or getattr(settings, "TAX_FORM_CALLBACK_URL", "")
    workflow_id = workflow_id or getattr(settings, "TAX_FORM_WORKFLOW_ID", "")
    if accounts is None:
        accounts = find_accounts_that_need_to_be_sent_tax_form(year)

    result = TaxFormBatchResult(year=year)
    logger.info("Tax form: %d account(s) to process for %s", len(accounts), year)
    for account in accounts:
        try:
            outcome = send_helloworks_us_tax_form(
                client,
                account,
                year,
                callback_url,
                workflow_id,
                allowed_recipient=allowed_recipient,
            )
        except Exception:
            logger.exception("Tax form: unexpected failure for account #%s (@%s)", account.id, account.slug)
            result.failed.append(account.id)
            continue

        if outcome is None:
            result.skipped.append(account.id)
        elif isinstance(outcome, LegalDocument) and outcome.request_status == LegalDocument.RequestStatus.ERROR:
            result.failed.append(account.id)
        else:
            result.requested.append(account.id)

    logger.info(
        "Tax form: %s done, %d requested, %d skipped, %d failed",
        year,
        len(result.requested),
        len(result.skipped),
        len(result.failed),
    )
    return result
