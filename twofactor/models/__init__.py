from twofactor.models.setup_session import SetupSessionStatus, TwoFactorSetupSession
from twofactor.models.user import User

__all__ = [
    "SetupSessionStatus",
    "TwoFactorSetupSession",
    "User",
]
