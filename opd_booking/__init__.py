"""Outpatient appointment booking with per-slot queues."""

from .app import create_app

__all__ = ["create_app"]
