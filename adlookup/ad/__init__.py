"""Active Directory (LDAP) gateway package.

Public API:
    - ADConfig
    - Identity
    - ADClient
"""

from .models import ADConfig, Identity
from .client import ADClient, NOT_AVAILABLE

__all__ = ["ADConfig", "Identity", "ADClient", "NOT_AVAILABLE"]
