"""
User roles and client application enumerations.

Defines the role types and the client apps sharing the settlement core.
"""

import enum
from sqlalchemy import Enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Company owner with access to company-wide data and ops endpoints
        GENERAL_USER: Wallet holder paying invoices, orders and peers (default role)
    """
    ADMIN = "admin"
    GENERAL_USER = "general_user"


class SourceApp(str, enum.Enum):
    """Client application that originated a transaction."""
    PAYFLOW = "payflow"
    INVOICEFLOW = "invoiceflow"
    STOCKFLOW = "stockflow"


def value_enum(enum_cls) -> Enum:
    """Column type persisting an enum by its value rather than its member name."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
    )
