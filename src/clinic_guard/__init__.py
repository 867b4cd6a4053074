"""clinic-guard: PHI audit and access control for multi-tenant clinic applications."""

__version__ = "0.1.0"
