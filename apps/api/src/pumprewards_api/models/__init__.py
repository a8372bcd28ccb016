"""SQLAlchemy models package."""

from .account import Account, AccountRole, AccountStatus  # noqa: F401
from .campaign import Campaign, CampaignStatus, CampaignType  # noqa: F401
from .points_ledger import LedgerEntryType, PointsLedgerEntry  # noqa: F401
from .redemption import Redemption, RedemptionStatus  # noqa: F401
from .reward import Reward, RewardAvailability, RewardStatus, RewardType  # noqa: F401
from .system_config import SystemConfig  # noqa: F401
from .transaction import (  # noqa: F401
    PaymentMode,
    PumpTransaction,
    TransactionCategory,
    TransactionStatus,
)
