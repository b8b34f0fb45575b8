"""
API Routers package.
"""

from . import cases, reschedule_requests, proposals, reminders, calendar

__all__ = ["cases", "reschedule_requests", "proposals", "reminders", "calendar"]
