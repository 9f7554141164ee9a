"""Core configuration, logging, errors and crypto primitives."""
