"""Normalize agent execution logs and render them as debug views."""
