"""
schemas/ — Pydantic models for service inputs and results

Gives the services typed inputs, tolerant readers for stored JSON
payloads, and consistent result shapes.
"""
