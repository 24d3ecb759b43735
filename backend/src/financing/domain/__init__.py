"""
Domain package - Core business logic with no external dependencies.

This package contains the financing entities and the pure functions
that compute rates, check eligibility and pick the best offer per invoice.
"""
