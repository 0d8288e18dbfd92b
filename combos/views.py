import csv
import json
import logging

from django.http import HttpResponse, JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from .engine import ComboEngine, get_pipeline
from .exceptions import ValidationError
from .forms import AnalyzeForm, ComboRankingsForm
from .generator import Combo
from .models import App
from .pipeline import AppContext
from .popularity import load_popularity
from .scoring import combo_popularity
from .templatetags.combo_tags import (
    competition_display,
    rank_display,
    tier_label,
    trend_arrow,
)

logger = logging.getLogger(__name__)


def _error(code: str, message: str, status: int = 400) -> JsonResponse:
    return JsonResponse({"error": {"code": code, "message": message}}, status=status)


def _load_json(request):
    """Parse a JSON object body; None when it is not one."""
    if not request.body:
        return {}
    try:
        body = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


@csrf_exempt
@require_POST
def combo_rankings_view(request):
    """
    Batch enrichment API.

    Accepts ``{appId, organizationId, locale, platform, combos[]}`` and
    returns one result per (normalized, de-duplicated) combo.  A combo
    whose signal could not be obtained has ``totalResults: null`` and an
    ``error`` marker; ``partial`` is true when any combo is unknown or stale.
    """
    body = _load_json(request)
    if body is None:
        return _error("INVALID_REQUEST", "Invalid JSON.")

    form = ComboRankingsForm(data={
        "app_id": body.get("appId"),
        "organization_id": body.get("organizationId"),
        "locale": str(body.get("locale") or "").lower(),
        "platform": str(body.get("platform") or "").lower(),
        "combos": body.get("combos"),
    })
    if not form.is_valid():
        return _error(**form.error_payload())
    data = form.cleaned_data

    pipeline = get_pipeline()
    try:
        batch = pipeline.fetch_rankings(
            AppContext(data["app_id"], data["organization_id"]),
            data["combos"],
            data["locale"],
            data["platform"],
            timeout=pipeline.config.request_timeout,
        )
    except ValidationError as e:
        return _error(e.code, e.message)

    texts = list(batch.results)
    words = {w for text in texts for w in text.split()}
    popularity = load_popularity(texts + sorted(words), data["locale"], data["platform"])

    results = []
    for text, record in batch.results.items():
        results.append({
            "combo": text,
            "totalResults": record.total_results,
            "position": record.position,
            "popularityScore": combo_popularity(Combo(text, frozenset()), popularity),
            "trend": record.trend,
            "positionChange": record.position_change,
            "cached": record.cached,
            "stale": record.stale,
            "ephemeral": record.ephemeral,
            "error": record.error,
            "checkedAt": record.checked_at.isoformat(),
        })

    return JsonResponse({"results": results, "partial": batch.partial})


@csrf_exempt
@require_POST
def analyze_app_view(request, app_id):
    """Run the full engine for a registered app and return its ranked combos."""
    app = get_object_or_404(App, id=app_id)
    body = _load_json(request)
    if body is None:
        return _error("INVALID_REQUEST", "Invalid JSON.")

    form = AnalyzeForm(data=body)
    if not form.is_valid():
        return _error(**form.error_payload())
    data = form.cleaned_data

    fetch = not data["skip_fetch"]
    pipeline = get_pipeline() if fetch else None
    engine = ComboEngine(pipeline=pipeline)
    timeout = data["timeout"] or engine.config.request_timeout
    try:
        analysis = engine.analyze(
            app,
            locale=data["locale"],
            platform=data["platform"],
            fetch=fetch,
            timeout=timeout,
            force_refresh=data["force_refresh"],
        )
    except ValidationError as e:
        return _error(e.code, e.message)

    return JsonResponse({
        "appId": app.id,
        "locale": analysis.locale,
        "platform": analysis.platform,
        "totalGenerated": analysis.total_generated,
        "truncated": analysis.truncated,
        "partial": analysis.partial,
        "combos": analysis.to_rows(),
    })


@require_GET
def export_combos_csv_view(request, app_id):
    """
    Export an app's scored combo set as CSV.

    Uses the last stored rankings; nothing is fetched.  Supports optional
    ?locale= and ?platform= filters.
    """
    app = get_object_or_404(App, id=app_id)
    locale = (request.GET.get("locale") or "us").lower()
    platform = (request.GET.get("platform") or "ios").lower()

    engine = ComboEngine()
    if locale not in engine.config.supported_locales:
        return _error("UNSUPPORTED_LOCALE", f"Unsupported locale: {locale}")
    if platform not in engine.config.supported_platforms:
        return _error("UNSUPPORTED_PLATFORM", f"Unsupported platform: {platform}")
    analysis = engine.analyze(app, locale=locale, platform=platform, fetch=False)

    response = HttpResponse(content_type="text/csv")
    filename = f"{app.name.lower().replace(' ', '-')}-combos-{locale}.csv"
    response["Content-Disposition"] = f'attachment; filename="{filename}"'

    writer = csv.writer(response)
    writer.writerow([
        "Combo", "Tier", "Sources", "Words", "Priority", "Popularity",
        "Competition", "Rank", "Trend", "Checked",
    ])
    for item in analysis.combos:
        ranking = item.ranking
        writer.writerow([
            item.text,
            tier_label(item.tier),
            "+".join(sorted(s.value for s in item.combo.sources)),
            item.combo.word_count,
            f"{item.priority.value:.2f}",
            item.popularity_score,
            competition_display(ranking.total_results if ranking else None),
            rank_display(ranking.position if ranking else None),
            trend_arrow(ranking.trend if ranking else None),
            ranking.checked_at.strftime("%Y-%m-%d %H:%M") if ranking else "",
        ])

    return response


def refresh_status_view(request):
    """Return the background popularity refresh progress as JSON."""
    from .scheduler import get_status
    return JsonResponse(get_status())
