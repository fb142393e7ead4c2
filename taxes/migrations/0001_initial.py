from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("core", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="LegalDocument",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("year", models.PositiveSmallIntegerField(db_index=True)),
                (
                    "document_type",
                    models.CharField(
                        choices=[("US_TAX_FORM", "US tax form")],
                        default="US_TAX_FORM",
                        max_length=32,
                    ),
                ),
                (
                    "request_status",
                    models.CharField(
                        choices=[
                            ("NOT_REQUESTED", "Not requested"),
                            ("REQUESTED", "Requested"),
                            ("RECEIVED", "Received"),
                            ("ERROR", "Error"),
                        ],
                        db_index=True,
                        default="NOT_REQUESTED",
                        max_length=16,
                    ),
                ),
                (
                    "data",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Provider snapshots, document links and error details, merged over time.",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "account",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="legal_documents",
                        to="core.account",
                    ),
                ),
            ],
            options={
                "ordering": ["-year", "account"],
            },
        ),
        migrations.AddConstraint(
            model_name="legaldocument",
            constraint=models.UniqueConstraint(
                fields=("account", "year", "document_type"),
                name="uniq_legal_document_per_account_year_type",
            ),
        ),
    ]
