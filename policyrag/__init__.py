"""Policy retrieval engine for insurance upsell recommendations."""

__version__ = "0.1.0"
