"""Coordination layer: event bus, services, dispatch, crawler and orchestrator."""
