"""Campaign service exports."""

from .matcher import CampaignService  # noqa: F401
