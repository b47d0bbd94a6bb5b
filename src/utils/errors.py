"""
Domain exceptions.

PermanentError subclasses mean retrying cannot help (missing configuration,
unknown platform, missing event). Anything else raised while processing a
webhook event is treated as transient and retried with backoff.
"""


class PermanentError(RuntimeError):
    """Base for failures that must not be retried."""


class PlatformNotFoundError(PermanentError):
    """No platform row exists for the requested slug or id."""


class UnsupportedPlatformError(PermanentError):
    """The platform exists but no adapter or handler table covers it."""


class ProviderNotConfiguredError(PermanentError):
    """Required credentials for a platform are missing or empty."""


class WebhookEventNotFoundError(PermanentError):
    """The referenced webhook event does not exist."""
