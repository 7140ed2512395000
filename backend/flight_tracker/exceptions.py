"""Error taxonomy for price checks, configuration and job bookkeeping."""


class FlightTrackerError(Exception):
    """Base class for every error raised by this package."""


class QuoteError(FlightTrackerError):
    """A price quote could not be produced (transient external failure)."""


class ScraperError(QuoteError):
    """The browser scrape failed."""


class NoPricesFound(ScraperError):
    """The page rendered but carried no plausible fare."""

    def __init__(self, message: str = "No prices found on page"):
        super().__init__(message)


class BrowserLaunchError(ScraperError):
    """Every browser executable candidate failed to launch."""


class ConfigurationError(FlightTrackerError):
    """Missing or rejected configuration. Never masked as a quote failure."""


class PricingConfigurationError(ConfigurationError):
    pass


class EmailNotConfiguredError(ConfigurationError):
    def __init__(self, message: str = "No email provider configured. Set ZAPIER_WEBHOOK_URL or RESEND_API_KEY."):
        super().__init__(message)


class EmailDeliveryError(FlightTrackerError):
    pass


class ContextFetchError(FlightTrackerError):
    pass


class InvalidJobTransition(FlightTrackerError):
    def __init__(self, job_id: int, current: str, requested: str):
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(f"Job {job_id}: cannot move from {current} to {requested}")


class JobNotFound(FlightTrackerError):
    def __init__(self, job_id: int):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")
