"""Points ledger service exports."""

from .calculation import apply_campaign, calculate_points  # noqa: F401
from .config import (  # noqa: F401
    ConfigProvider,
    PointsConfig,
    PointsRates,
    StaticConfigProvider,
    SystemConfigProvider,
)
from .expiry import ExpirySweepSummary, PointsExpiryService, ReminderSummary  # noqa: F401
from .ledger import LedgerResult, PointsLedger  # noqa: F401
from .locks import AccountLockRegistry, get_account_locks  # noqa: F401
from .service import PointsService, ReconciliationReport, WalletPage  # noqa: F401
from .wallet import WalletBucket, WalletStore, WalletSummary  # noqa: F401
