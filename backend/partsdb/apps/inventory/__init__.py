"""
Inventory module.

Append-only stock ledger per (tenant, part), the materialised balance it
drives, and the part catalogue movements refer to.
"""

from . import router  # noqa: F401
from . import models  # noqa: F401
