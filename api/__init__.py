"""HTTP interface for the engine."""
