"""
Core modules for the LLM orchestrator.

This package contains classification, routing, cost governance, the
two-pass protocol, provenance and drift detection.
"""
