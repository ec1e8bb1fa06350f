"""Shared infrastructure: settings, logging, storage and the AI collaborator."""
