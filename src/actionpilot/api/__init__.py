"""HTTP API for ActionPilot."""
