from datetime import timedelta

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.utils import deep_merge


class LegalDocument(models.Model):
    """
    Lifecycle of a legal document requested from an account for a given year.

    There is at most one row per (account, year, document_type); rows are
    created on the first request attempt and never deleted.
    """

    class DocumentType(models.TextChoices):
        US_TAX_FORM = "US_TAX_FORM", "US tax form"

    class RequestStatus(models.TextChoices):
        NOT_REQUESTED = "NOT_REQUESTED", "Not requested"
        REQUESTED = "REQUESTED", "Requested"
        RECEIVED = "RECEIVED", "Received"
        ERROR = "ERROR", "Error"

    account = models.ForeignKey(
        "core.Account",
        on_delete=models.CASCADE,
        related_name="legal_documents",
    )
    year = models.PositiveSmallIntegerField(db_index=True)
    document_type = models.CharField(
        max_length=32,
        choices=DocumentType.choices,
        default=DocumentType.US_TAX_FORM,
    )
    request_status = models.CharField(
        max_length=16,
        choices=RequestStatus.choices,
        default=RequestStatus.NOT_REQUESTED,
        db_index=True,
    )
    data = models.JSONField(
        default=dict,
        blank=True,
        help_text="Provider snapshots, document links and error details, merged over time.",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-year", "account"]
        constraints = [
            models.UniqueConstraint(
                fields=["account", "year", "document_type"],
                name="uniq_legal_document_per_account_year_type",
            )
        ]

    def __str__(self):
        return f"{self.document_type} {self.year} for account #{self.account_id} ({self.request_status})"

    def should_be_requested(self, now=None) -> bool:
        if self.request_status == self.RequestStatus.ERROR:
            return True
        if self.request_status != self.RequestStatus.NOT_REQUESTED:
            return False
        # A fresh NOT_REQUESTED row may belong to a request that is still in flight
        now = now or timezone.now()
        stale_after = timedelta(hours=getattr(settings, "TAX_FORM_STALE_REQUEST_HOURS", 24))
        return self.updated_at is None or self.updated_at <= now - stale_after

    def merge_data(self, data):
        self.data = deep_merge(self.data, data)
        self.save(update_fields=["data", "updated_at"])
        return self
