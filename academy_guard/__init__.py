"""academy-guard: tenant authorization and plan-quota enforcement."""

__version__ = "0.1.0"
