"""Authentication: providers, session persistence and the session lifecycle."""
