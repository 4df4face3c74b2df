"""Prometheus metrics for services, transitions and outbound delivery."""
