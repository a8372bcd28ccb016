"""Points job exports."""

from .expiry import run_points_expiry, send_points_expiry_reminders  # noqa: F401

__all__ = [
    "run_points_expiry",
    "send_points_expiry_reminders",
]
