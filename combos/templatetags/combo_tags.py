from django import template

from ..classifier import Tier

register = template.Library()

EMPTY = "—"


@register.filter
def format_number(value):
    """Format an integer with comma separators. Usage: {{ num|format_number }}"""
    try:
        return f"{int(value):,}"
    except (ValueError, TypeError):
        return value


@register.filter
def competition_display(total_results):
    """
    Competing app count for a combo.

    ``None`` means the count is unknown and renders as an em dash, never
    as "0".  Usage: {{ ranking.total_results|competition_display }}
    """
    if total_results is None:
        return EMPTY
    return format_number(total_results)


@register.filter
def rank_display(position):
    """'#12' for a ranking position, em dash when the app does not rank."""
    if position is None:
        return EMPTY
    return f"#{position}"


@register.filter
def trend_arrow(trend, position_change=None):
    """Plain-text trend marker.

    Usage:
        {{ ranking.trend|trend_arrow }}                          → ↑ / ↓ / → / new / lost
        {{ ranking.trend|trend_arrow:ranking.position_change }}  → ↑3 / ↓2
    """
    if not trend:
        return ""
    if trend in ("up", "down"):
        arrow = "↑" if trend == "up" else "↓"
        if position_change:
            return f"{arrow}{abs(int(position_change))}"
        return arrow
    if trend == "stable":
        return "→"
    return trend


@register.filter
def tier_label(tier):
    """Human label for a tier.  Usage: {{ combo.tier|tier_label }}"""
    try:
        return Tier(int(tier)).label
    except (TypeError, ValueError):
        return EMPTY
