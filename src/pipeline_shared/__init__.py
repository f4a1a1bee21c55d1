"""Shared models, protocols, constants, and utilities for the CI pipeline.

This package is the foundational layer for the builder, environment,
testing, coverage_aggregator, and ci_orchestrator packages.
"""

__version__ = "1.0.0"
