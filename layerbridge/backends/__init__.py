from .base import BACKEND_PROFILES, Backend, BackendProfile, profile_for
from .registry import BackendRegistry

__all__ = ["BACKEND_PROFILES", "Backend", "BackendProfile", "BackendRegistry", "profile_for"]
