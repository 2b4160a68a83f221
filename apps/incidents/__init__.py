"""
Incidents app.

Canonical store for incidents, components and daily metrics aggregated from
external status pages, plus the vendor connectors that read those pages.
"""
