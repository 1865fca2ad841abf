"""hugobox: containerized Hugo live preview with restart-on-change."""

__version__ = "0.1.0"
