"""PagePersona content-transformation service: admission, deduplication and caching in front of the AI pipeline."""

__version__ = "0.1.0"
