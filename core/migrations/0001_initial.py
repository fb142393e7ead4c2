from decimal import Decimal

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Account",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                (
                    "legal_name",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Official name used on tax documents, when different from the display name.",
                        max_length=255,
                    ),
                ),
                ("slug", models.SlugField(max_length=255, unique=True)),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("USER", "User"),
                            ("ORGANIZATION", "Organization"),
                            ("COLLECTIVE", "Collective"),
                        ],
                        db_index=True,
                        default="USER",
                        max_length=16,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "owner_user",
                    models.OneToOneField(
                        blank=True,
                        help_text="Set for USER accounts: the user whose personal profile this is.",
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="personal_account",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="AccountMember",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "role",
                    models.CharField(
                        choices=[("ADMIN", "Admin"), ("MEMBER", "Member")],
                        default="ADMIN",
                        max_length=10,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "account",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="memberships",
                        to="core.account",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="account_memberships",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["account", "id"],
            },
        ),
        migrations.AddField(
            model_name="account",
            name="admins",
            field=models.ManyToManyField(
                blank=True,
                related_name="member_of_accounts",
                through="core.AccountMember",
                to=settings.AUTH_USER_MODEL,
            ),
        ),
        migrations.AddConstraint(
            model_name="accountmember",
            constraint=models.UniqueConstraint(
                fields=("account", "user", "role"),
                name="uniq_account_member_role",
            ),
        ),
        migrations.CreateModel(
            name="Expense",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("description", models.CharField(blank=True, default="", max_length=255)),
                ("amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("currency", models.CharField(default="USD", max_length=3)),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("INVOICE", "Invoice"),
                            ("RECEIPT", "Receipt"),
                            ("FUNDING_REQUEST", "Funding request"),
                        ],
                        default="INVOICE",
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("APPROVED", "Approved"),
                            ("PAID", "Paid"),
                            ("REJECTED", "Rejected"),
                        ],
                        db_index=True,
                        default="PENDING",
                        max_length=10,
                    ),
                ),
                (
                    "payout_method",
                    models.CharField(
                        choices=[
                            ("PAYPAL", "PayPal"),
                            ("BANK_TRANSFER", "Bank transfer"),
                            ("OTHER", "Other"),
                        ],
                        default="OTHER",
                        max_length=16,
                    ),
                ),
                ("incurred_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                (
                    "from_account",
                    models.ForeignKey(
                        help_text="Account receiving the payout.",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="expenses",
                        to="core.account",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        help_text="User who submitted the expense.",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="expenses",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
