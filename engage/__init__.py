"""Engage core — contact identity, scoring, routing and the AI conversation pipeline."""

__version__ = "0.1.0"
