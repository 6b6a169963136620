"""The source controller module.

This module provides a controller that reconciles GitRepository resources
into published artifacts.
"""

from .controller import ReconciliationOutcome, SourceController

__all__ = [
    "ReconciliationOutcome",
    "SourceController",
]
