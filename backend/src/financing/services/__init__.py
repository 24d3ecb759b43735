"""
Services package - Orchestration of financing runs.
"""

from .financing import FinancingService

__all__ = ["FinancingService"]
