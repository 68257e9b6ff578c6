"""
AI Smart Router.

Routes each message to the cheapest model able to answer it, reuses past
answers through a semantic cache and keeps a cost ledger with a target
margin.
"""

__version__ = "0.1.0"
