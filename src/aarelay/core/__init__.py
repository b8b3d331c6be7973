"""
aarelay Core Module

Entry point contracts, gas metering, host value transfers, configuration,
logging and the relay exception hierarchy.
"""

__all__ = []
