"""
Tenant Authorization Engine
Tenant-scoped role-based authorization, listing scopes and an immutable audit trail
"""

__version__ = "1.0.0"
