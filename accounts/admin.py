from django.contrib import admin

from .models import AccountProfile


@admin.register(AccountProfile)
class AccountProfileAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "email_verified", "verified_at", "created_at")
    list_filter = ("email_verified",)
    search_fields = ("user__username", "user__email")
    readonly_fields = ("verification_token", "created_at", "updated_at")
