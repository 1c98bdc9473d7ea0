"""Command line interface for the snapshot store."""
