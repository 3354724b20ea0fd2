"""SaaSGuard: policy automation and event-driven SaaS governance."""

__version__ = "0.3.0"
__author__ = "SaaSGuard Team"
