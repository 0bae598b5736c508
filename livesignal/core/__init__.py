"""Core building blocks: error taxonomy, constants, candidate buffering, logging."""
