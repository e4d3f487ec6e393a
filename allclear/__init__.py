"""allclear — embeddable health-check runner."""

__version__ = "0.1.0"
