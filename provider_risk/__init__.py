"""Provider collusion-ring detection and risk feature aggregation."""

__version__ = "0.1.0"
