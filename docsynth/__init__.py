"""DocSynth: event-driven documentation generation, review and drift healing."""

__version__ = "1.0.0"
