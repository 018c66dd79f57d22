"""Command-line entry point for lumera-ica-client."""
