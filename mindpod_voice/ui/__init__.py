"""UI-facing models (no rendering)."""
