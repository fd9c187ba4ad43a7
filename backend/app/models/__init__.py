from app.models.base import Base, TimestampMixin
from app.models.email_settings import EmailSettings
from app.models.practice import Clinic, Doctor, Profile, Region, UserRegion

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Readiness domains
    "Profile",
    "Clinic",
    "Doctor",
    "Region",
    "UserRegion",
    # Email
    "EmailSettings",
]
