from decimal import Decimal

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import models
from django.utils import timezone


class Account(models.Model):
    """
    A party on the platform that can be paid out: a person's own profile,
    an organization, or a collective.
    """

    class AccountType(models.TextChoices):
        USER = "USER", "User"
        ORGANIZATION = "ORGANIZATION", "Organization"
        COLLECTIVE = "COLLECTIVE", "Collective"

    name = models.CharField(max_length=255)
    legal_name = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Official name used on tax documents, when different from the display name.",
    )
    slug = models.SlugField(max_length=255, unique=True)
    type = models.CharField(
        max_length=16,
        choices=AccountType.choices,
        default=AccountType.USER,
        db_index=True,
    )
    owner_user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="personal_account",
        help_text="Set for USER accounts: the user whose personal profile this is.",
    )
    admins = models.ManyToManyField(
        settings.AUTH_USER_MODEL,
        through="AccountMember",
        related_name="member_of_accounts",
        blank=True,
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} (@{self.slug})"

    def get_admin_users(self) -> list:
        """
        Admin users in membership order, with their personal account loaded.
        A USER account is always administered by its owner, listed first.
        """
        User = get_user_model()
        admins = list(
            User.objects.filter(
                account_memberships__account=self,
                account_memberships__role=AccountMember.Role.ADMIN,
            )
            .select_related("personal_account")
            .order_by("account_memberships__id")
        )
        if self.type == self.AccountType.USER and self.owner_user_id:
            if not any(u.id == self.owner_user_id for u in admins):
                owner = User.objects.select_related("personal_account").get(pk=self.owner_user_id)
                admins.insert(0, owner)
        return admins


class AccountMember(models.Model):
    class Role(models.TextChoices):
        ADMIN = "ADMIN", "Admin"
        MEMBER = "MEMBER", "Member"

    account = models.ForeignKey(
        Account,
        on_delete=models.CASCADE,
        related_name="memberships",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="account_memberships",
    )
    role = models.CharField(max_length=10, choices=Role.choices, default=Role.ADMIN)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["account", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["account", "user", "role"],
                name="uniq_account_member_role",
            )
        ]

    def __str__(self):
        return f"{self.user} -> {self.account.slug} ({self.role})"


class Expense(models.Model):
    """
    A payout request submitted by a user and paid from an account's balance.
    """

    class ExpenseType(models.TextChoices):
        INVOICE = "INVOICE", "Invoice"
        RECEIPT = "RECEIPT", "Receipt"
        FUNDING_REQUEST = "FUNDING_REQUEST", "Funding request"

    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        APPROVED = "APPROVED", "Approved"
        PAID = "PAID", "Paid"
        REJECTED = "REJECTED", "Rejected"

    class PayoutMethod(models.TextChoices):
        PAYPAL = "PAYPAL", "PayPal"
        BANK_TRANSFER = "BANK_TRANSFER", "Bank transfer"
        OTHER = "OTHER", "Other"

    from_account = models.ForeignKey(
        Account,
        on_delete=models.CASCADE,
        related_name="expenses",
        help_text="Account receiving the payout.",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="expenses",
        help_text="User who submitted the expense.",
    )
    description = models.CharField(max_length=255, blank=True, default="")
    amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, default="USD")
    type = models.CharField(
        max_length=20,
        choices=ExpenseType.choices,
        default=ExpenseType.INVOICE,
    )
    status = models.CharField(
        max_length=10,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
    )
    payout_method = models.CharField(
        max_length=16,
        choices=PayoutMethod.choices,
        default=PayoutMethod.OTHER,
    )
    incurred_at = models.DateTimeField(default=timezone.now)
    paid_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.description or self.type} – {self.amount} {self.currency}"
