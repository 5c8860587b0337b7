"""hostwatch — polling host health checks with threshold alerts."""

__version__ = "0.1.0"
