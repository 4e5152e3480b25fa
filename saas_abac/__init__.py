"""
Attribute-based access control for the multi-tenant admin platform.

Policy matching, conflict resolution and field-level permissions.
"""

__version__ = "0.1.0"
