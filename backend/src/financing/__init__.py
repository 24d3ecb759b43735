"""
Invoice financing engine.

Matches unfinanced invoices with purchaser offers and records
financing agreements for the best eligible offer.
"""

__version__ = "0.1.0"
