"""
Account Administration Schemas.
"""

from typing import Dict

from pydantic import BaseModel


class AppPermissionsResponse(BaseModel):
    user_id: int
    permissions: Dict[str, bool]
