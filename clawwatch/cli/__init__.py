"""Command-line interface for clawwatch."""
