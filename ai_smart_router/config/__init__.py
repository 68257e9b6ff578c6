"""Router configuration loading."""
