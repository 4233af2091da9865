"""Kubernetes operator that provisions Instana custom dashboards from Dashboard resources."""

__version__ = "0.1.0"
