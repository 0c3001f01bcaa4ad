"""Storage and queries for chat messages exchanged through drops."""
