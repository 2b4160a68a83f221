"""
Incident sync app.

Keeps the local incident store in step with the configured status pages:
a scheduler runs the sync orchestrator at a fixed interval, operators can
trigger runs on demand, and progress is streamed to subscribers as events.
"""
