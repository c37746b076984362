"""Phase-based provisioning of a single free-tier proxy service on Google Cloud."""

__version__ = "0.1.0"
