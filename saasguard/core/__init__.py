"""Core discovery, analysis and lifecycle services."""
