from django.contrib import admin

from .models import League, LeagueMember


class LeagueMemberInline(admin.TabularInline):
    model = LeagueMember
    extra = 0
    fields = ("user", "joined_at")
    readonly_fields = ("joined_at",)


@admin.register(League)
class LeagueAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "invitation_code", "virtual_budget", "admin", "created_at")
    search_fields = ("name", "invitation_code", "admin__username", "admin__email")
    list_select_related = ("admin",)
    ordering = ("-created_at",)
    inlines = [LeagueMemberInline]


@admin.register(LeagueMember)
class LeagueMemberAdmin(admin.ModelAdmin):
    list_display = ("id", "league", "user", "joined_at")
    search_fields = ("league__name", "user__username", "user__email")
    list_select_related = ("league", "user")
    ordering = ("-joined_at",)
