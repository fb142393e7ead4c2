from django.contrib import admin

from .models import LegalDocument


@admin.register(LegalDocument)
class LegalDocumentAdmin(admin.ModelAdmin):
    list_display = ("account", "year", "document_type", "request_status", "updated_at")
    list_filter = ("document_type", "request_status", "year")
    search_fields = ("account__slug", "account__name", "account__legal_name")
    raw_id_fields = ("account",)
    readonly_fields = ("created_at", "updated_at")
