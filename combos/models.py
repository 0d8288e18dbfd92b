from django.db import models
from django.utils import timezone

from .records import PopularityRecord, RankingRecord

PLATFORM_CHOICES = [
    ("ios", "iOS"),
    ("android", "Android"),
]

TREND_CHOICES = [
    ("up", "Up"),
    ("down", "Down"),
    ("stable", "Stable"),
    ("new", "New"),
    ("lost", "Lost"),
]


class App(models.Model):
    """An app whose metadata feeds the combo generator."""

    name = models.CharField(max_length=200)
    bundle_id = models.CharField(max_length=255, blank=True)
    track_id = models.BigIntegerField(unique=True, null=True, blank=True)
    title = models.CharField(
        max_length=255,
        blank=True,
        help_text="App Store title. Falls back to the app name when empty.",
    )
    subtitle = models.CharField(max_length=255, blank=True)
    organization_id = models.CharField(max_length=64, blank=True)
    seller_name = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name

    @property
    def metadata_title(self) -> str:
        return self.title or self.name

    def custom_keywords(self) -> list[str]:
        return list(self.keywords.values_list("keyword", flat=True))


class Keyword(models.Model):
    """A user-supplied custom keyword (or phrase) for an app."""

    app = models.ForeignKey(App, on_delete=models.CASCADE, related_name="keywords")
    keyword = models.CharField(max_length=200)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["keyword"]
        constraints = [
            models.UniqueConstraint(fields=["app", "keyword"], name="unique_app_keyword"),
        ]

    def __str__(self):
        return self.keyword

    def save(self, *args, **kwargs):
        self.keyword = " ".join(self.keyword.lower().split())
        super().save(*args, **kwargs)


class KeywordPopularity(models.Model):
    """Estimated popularity of a keyword, one row per keyword+locale+platform."""

    keyword = models.CharField(max_length=200)
    locale = models.CharField(max_length=8, default="us")
    platform = models.CharField(max_length=16, choices=PLATFORM_CHOICES, default="ios")
    popularity_score = models.PositiveSmallIntegerField(default=0)
    autocomplete_score = models.FloatField(default=0.0)
    autocomplete_rank = models.PositiveSmallIntegerField(null=True, blank=True)
    intent_score = models.FloatField(default=0.0)
    participation_count = models.PositiveIntegerField(default=0)
    length_prior = models.FloatField(default=0.0)
    word_count = models.PositiveSmallIntegerField(default=1)
    last_checked_at = models.DateTimeField(default=timezone.now)

    class Meta:
        verbose_name_plural = "keyword popularity"
        constraints = [
            models.UniqueConstraint(
                fields=["keyword", "locale", "platform"],
                name="unique_keyword_popularity",
            ),
        ]

    def __str__(self):
        return f"{self.keyword} ({self.locale}/{self.platform}): {self.popularity_score}"

    @classmethod
    def upsert(cls, record: PopularityRecord) -> "KeywordPopularity":
        obj, _ = cls.objects.update_or_create(
            keyword=record.keyword,
            locale=record.locale,
            platform=record.platform,
            defaults={
                "popularity_score": record.popularity_score,
                "autocomplete_score": record.autocomplete_score,
                "autocomplete_rank": record.autocomplete_rank,
                "intent_score": record.intent_score,
                "participation_count": record.participation_count,
                "length_prior": record.length_prior,
                "word_count": record.word_count,
                "last_checked_at": record.last_checked_at,
            },
        )
        return obj

    def to_record(self) -> PopularityRecord:
        return PopularityRecord(
            keyword=self.keyword,
            locale=self.locale,
            platform=self.platform,
            popularity_score=self.popularity_score,
            autocomplete_score=self.autocomplete_score,
            intent_score=self.intent_score,
            length_prior=self.length_prior,
            last_checked_at=self.last_checked_at,
            autocomplete_rank=self.autocomplete_rank,
            participation_count=self.participation_count,
            word_count=self.word_count,
        )


class ComboRanking(models.Model):
    """
    Latest competitive signal for a combo, one row per app+combo+locale+platform.

    ``total_results`` is NULL when the signal is unknown.  It is never
    written as 0 for a failed fetch.
    """

    app = models.ForeignKey(App, on_delete=models.CASCADE, related_name="combo_rankings")
    combo = models.CharField(max_length=200)
    locale = models.CharField(max_length=8, default="us")
    platform = models.CharField(max_length=16, choices=PLATFORM_CHOICES, default="ios")
    total_results = models.PositiveIntegerField(null=True, blank=True)
    position = models.PositiveIntegerField(null=True, blank=True)
    trend = models.CharField(max_length=8, choices=TREND_CHOICES, null=True, blank=True)
    position_change = models.IntegerField(null=True, blank=True)
    checked_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-checked_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["app", "combo", "locale", "platform"],
                name="unique_combo_ranking",
            ),
        ]
        indexes = [
            models.Index(fields=["locale", "platform", "checked_at"], name="combo_ranking_market_idx"),
        ]

    def __str__(self):
        return f"{self.combo} ({self.locale}/{self.platform})"

    @classmethod
    def upsert(cls, app: App, record: RankingRecord) -> "ComboRanking":
        """Whole-row replacement keyed by app+combo+locale+platform."""
        obj, _ = cls.objects.update_or_create(
            app=app,
            combo=record.combo,
            locale=record.locale,
            platform=record.platform,
            defaults={
                "total_results": record.total_results,
                "position": record.position,
                "trend": record.trend,
                "position_change": record.position_change,
                "checked_at": record.checked_at,
            },
        )
        return obj

    def to_record(self) -> RankingRecord:
        return RankingRecord(
            combo=self.combo,
            app_id=self.app.track_id,
            locale=self.locale,
            platform=self.platform,
            total_results=self.total_results,
            position=self.position,
            checked_at=self.checked_at,
            trend=self.trend,
            position_change=self.position_change,
        )
