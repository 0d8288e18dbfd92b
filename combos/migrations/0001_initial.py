import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="App",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=200)),
                ("bundle_id", models.CharField(blank=True, max_length=255)),
                ("track_id", models.BigIntegerField(blank=True, null=True, unique=True)),
                (
                    "title",
                    models.CharField(
                        blank=True,
                        help_text="App Store title. Falls back to the app name when empty.",
                        max_length=255,
                    ),
                ),
                ("subtitle", models.CharField(blank=True, max_length=255)),
                ("organization_id", models.CharField(blank=True, max_length=64)),
                ("seller_name", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="KeywordPopularity",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("keyword", models.CharField(max_length=200)),
                ("locale", models.CharField(default="us", max_length=8)),
                (
                    "platform",
                    models.CharField(
                        choices=[("ios", "iOS"), ("android", "Android")], default="ios", max_length=16
                    ),
                ),
                ("popularity_score", models.PositiveSmallIntegerField(default=0)),
                ("autocomplete_score", models.FloatField(default=0.0)),
                ("autocomplete_rank", models.PositiveSmallIntegerField(blank=True, null=True)),
                ("intent_score", models.FloatField(default=0.0)),
                ("participation_count", models.PositiveIntegerField(default=0)),
                ("length_prior", models.FloatField(default=0.0)),
                ("word_count", models.PositiveSmallIntegerField(default=1)),
                ("last_checked_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "verbose_name_plural": "keyword popularity",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("keyword", "locale", "platform"), name="unique_keyword_popularity"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Keyword",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("keyword", models.CharField(max_length=200)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "app",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="keywords",
                        to="combos.app",
                    ),
                ),
            ],
            options={
                "ordering": ["keyword"],
                "constraints": [
                    models.UniqueConstraint(fields=("app", "keyword"), name="unique_app_keyword")
                ],
            },
        ),
        migrations.CreateModel(
            name="ComboRanking",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("combo", models.CharField(max_length=200)),
                ("locale", models.CharField(default="us", max_length=8)),
                (
                    "platform",
                    models.CharField(
                        choices=[("ios", "iOS"), ("android", "Android")], default="ios", max_length=16
                    ),
                ),
                ("total_results", models.PositiveIntegerField(blank=True, null=True)),
                ("position", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "trend",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("up", "Up"),
                            ("down", "Down"),
                            ("stable", "Stable"),
                            ("new", "New"),
                            ("lost", "Lost"),
                        ],
                        max_length=8,
                        null=True,
                    ),
                ),
                ("position_change", models.IntegerField(blank=True, null=True)),
                ("checked_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "app",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="combo_rankings",
                        to="combos.app",
                    ),
                ),
            ],
            options={
                "ordering": ["-checked_at"],
                "indexes": [
                    models.Index(
                        fields=["locale", "platform", "checked_at"],
                        name="combo_ranking_market_idx",
                    )
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("app", "combo", "locale", "platform"), name="unique_combo_ranking"
                    )
                ],
            },
        ),
    ]
