"""Application layer: lookup flow and command-line interface."""
