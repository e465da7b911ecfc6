from django.contrib import admin

from .models import Holding, Portfolio, Transaction


class HoldingInline(admin.TabularInline):
    model = Holding
    extra = 0
    fields = ("symbol", "quantity", "average_price", "updated_at")
    readonly_fields = ("updated_at",)


@admin.register(Portfolio)
class PortfolioAdmin(admin.ModelAdmin):
    list_display = ("id", "league", "user", "cash_balance", "total_value", "updated_at")
    search_fields = ("league__name", "user__username", "user__email")
    list_select_related = ("league", "user")
    readonly_fields = ("membership", "created_at", "updated_at")
    inlines = [HoldingInline]


@admin.register(Holding)
class HoldingAdmin(admin.ModelAdmin):
    list_display = ("id", "portfolio", "symbol", "quantity", "average_price", "updated_at")
    list_filter = ("symbol",)
    search_fields = ("symbol", "portfolio__user__username")


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "timestamp",
        "league",
        "user",
        "transaction_type",
        "symbol",
        "quantity",
        "price",
        "total_amount",
        "realized_gain",
    )
    list_filter = ("transaction_type",)
    search_fields = ("symbol", "user__username", "league__name")
    list_select_related = ("league", "user")
    ordering = ("-timestamp",)

    # Audit log: viewable, never editable.
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
