"""AgriPilot HTTP API."""
