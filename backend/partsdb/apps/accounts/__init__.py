"""
Accounts module.

Tenants (brands) and the users acting on their behalf.
"""

from . import models  # noqa: F401
