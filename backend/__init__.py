"""
Timeline Backend - HTTP adapter for the timeline engine.

This package provides a FastAPI backend that accepts work records from the
fetch layer and returns timeline rows, dependency edges and saved board
presets in the format expected by the timeline frontend.
"""
