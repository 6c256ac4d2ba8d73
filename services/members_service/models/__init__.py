"""Members Service models package."""

from services.members_service.models.member import User

__all__ = ["User"]
