"""Flight Tracker - airfare price tracking with job-based price checks."""

__version__ = "1.0.0"
