"""Command-line interface for driving AG-UI agents."""
