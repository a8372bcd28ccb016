"""Redemption service exports."""

from .codes import code_exists_in, generate_redemption_code  # noqa: F401
from .state_machine import RedemptionResult, RedemptionService  # noqa: F401
