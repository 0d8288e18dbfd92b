from django.urls import path

from . import views

app_name = "combos"

urlpatterns = [
    path("api/combo-rankings/", views.combo_rankings_view, name="combo_rankings"),
    path("api/apps/<int:app_id>/combos/analyze/", views.analyze_app_view, name="analyze_app"),
    path("apps/<int:app_id>/combos/export.csv", views.export_combos_csv_view, name="export_combos_csv"),
    path("api/refresh-status/", views.refresh_status_view, name="refresh_status"),
]
