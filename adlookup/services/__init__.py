"""Application service layer.

We keep a stable import surface for the dispatcher:
    from adlookup.services import ...
"""

from .ad import ad_cfg_from_env
from .suggest import SearchCoordinator, SearchOutcome
from .userinfo import USER_ATTRIBUTES, build_user_info

__all__ = [
    "ad_cfg_from_env",
    "SearchCoordinator",
    "SearchOutcome",
    "USER_ATTRIBUTES",
    "build_user_info",
]
