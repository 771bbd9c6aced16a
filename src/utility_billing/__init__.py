"""Utility Billing: tariff calculation and invoice assembly engine."""

try:
    from importlib.metadata import version as _pkg_version
    __version__ = _pkg_version("utility-billing")
except Exception:
    __version__ = "dev"
