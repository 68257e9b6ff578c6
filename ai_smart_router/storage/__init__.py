"""SQLite persistence for the knowledge base and the cost ledger."""
