"""Trial docket: scheduling and reschedule negotiation for small-claims trials."""

__version__ = "1.0.0"
