# backend/partsdb/__init__.py
"""
partsdb: tenant-scoped parts inventory ledger.

Importing the app model modules here registers every table on
`Base.metadata` for Alembic and `create_all()`.
"""

from .apps.accounts import models as accounts_models      # tenants / users
from .apps.audit import models as audit_models            # audit trail
from .apps.inventory import models as inventory_models    # parts, ledger, balances

__all__ = [
    "accounts_models",
    "audit_models",
    "inventory_models",
]
