"""Shared helpers: HTTP access, logging utilities and cancellation."""
