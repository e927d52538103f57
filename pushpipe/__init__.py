"""Push-triggered build and deploy pipelines."""

__version__ = "0.1.0"
