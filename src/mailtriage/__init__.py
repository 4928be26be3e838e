"""Rule-driven email classification, routing, prioritisation and triage."""

__version__ = "0.1.0"
