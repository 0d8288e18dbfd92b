from django.contrib import admin

from .models import App, ComboRanking, Keyword, KeywordPopularity


@admin.register(App)
class AppAdmin(admin.ModelAdmin):
    list_display = ("name", "track_id", "bundle_id", "organization_id", "created_at")
    search_fields = ("name", "bundle_id", "title", "subtitle")


@admin.register(Keyword)
class KeywordAdmin(admin.ModelAdmin):
    list_display = ("keyword", "app", "created_at")
    list_filter = ("app",)
    search_fields = ("keyword",)


@admin.register(KeywordPopularity)
class KeywordPopularityAdmin(admin.ModelAdmin):
    list_display = (
        "keyword",
        "popularity_score",
        "autocomplete_rank",
        "intent_score",
        "locale",
        "platform",
        "last_checked_at",
    )
    list_filter = ("locale", "platform")
    search_fields = ("keyword",)
    readonly_fields = ("last_checked_at",)


@admin.register(ComboRanking)
class ComboRankingAdmin(admin.ModelAdmin):
    list_display = (
        "combo",
        "app",
        "total_results",
        "position",
        "trend",
        "locale",
        "platform",
        "checked_at",
    )
    list_filter = ("locale", "platform", "trend", "app")
    search_fields = ("combo",)
    readonly_fields = ("checked_at",)
