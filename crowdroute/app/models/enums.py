"""
Contributor role enumeration.
"""

import enum


class ContributorRole(str, enum.Enum):
    """
    Contributor role enumeration.

    Roles:
        CONTRIBUTOR: Default role; privileges come from reputation alone
        REVIEWER: May review suggestions and verify reports regardless of reputation
        ADMIN: Platform operator, same review rights as REVIEWER
    """
    CONTRIBUTOR = "CONTRIBUTOR"
    REVIEWER = "REVIEWER"
    ADMIN = "ADMIN"
