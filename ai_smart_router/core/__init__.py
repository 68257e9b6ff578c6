"""
Core modules for AI Smart Router.

This package contains classification, model selection, the semantic
cache, pricing, the cost ledger, knowledge capitalization and the router
that ties them together.
"""
