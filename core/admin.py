from django.contrib import admin

from .models import Account, AccountMember, Expense


admin.site.site_header = "Payouts – System Admin"
admin.site.site_title = "Payouts System Admin"


def _superuser_only(request):
    return request.user.is_active and request.user.is_superuser


admin.site.has_permission = _superuser_only


class AccountMemberInline(admin.TabularInline):
    model = AccountMember
    extra = 0
    raw_id_fields = ("user",)


@admin.register(Account)
class AccountAdmin(admin.ModelAdmin):
    list_display = ("name", "slug", "type", "legal_name", "created_at")
    list_filter = ("type",)
    search_fields = ("name", "slug", "legal_name")
    ordering = ("name",)
    inlines = [AccountMemberInline]


@admin.register(Expense)
class ExpenseAdmin(admin.ModelAdmin):
    list_display = (
        "from_account",
        "user",
        "display_amount",
        "type",
        "status",
        "payout_method",
        "incurred_at",
    )
    list_filter = ("status", "type", "payout_method")
    search_fields = ("from_account__slug", "user__email", "description")
    raw_id_fields = ("from_account", "user")

    @admin.display(description="Amount")
    def display_amount(self, obj):
        return f"{obj.amount} {obj.currency}"
