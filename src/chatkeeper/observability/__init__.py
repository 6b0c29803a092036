"""Observability subsystem for chatkeeper.

health: health report and checks consumed by the HTTP layer
logging: structlog configuration
"""
