"""
Entitlement Client for commercially distributed add-ons

This library periodically asks a remote seller whether an installation is
entitled to run, caches the verdict, and exposes it (with a human-readable
failure reason) to the host application. Network problems fail open so that
paying customers are never locked out by a provider outage.
"""

__version__ = "1.0.0"
