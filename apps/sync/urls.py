"""
URL configuration for the sync app.
"""

from django.urls import path

from apps.sync.views import (
    ActiveIncidentsView,
    SyncEventStreamView,
    SyncStatusView,
    SyncTriggerView,
)

app_name = "sync"

urlpatterns = [
    path("trigger/", SyncTriggerView.as_view(), name="trigger"),
    path("status/", SyncStatusView.as_view(), name="status"),
    path("events/", SyncEventStreamView.as_view(), name="events"),
    path("incidents/active/", ActiveIncidentsView.as_view(), name="active_incidents"),
]
