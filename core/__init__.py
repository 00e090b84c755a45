"""Core primitives: errors, token usage and estimation, generation client."""
