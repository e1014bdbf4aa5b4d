class TransientFetchError(Exception):
    """A fetch failed for a reason that may go away on retry (network, auth, rate limit)"""


class ConfigError(Exception):
    """Startup configuration is missing or invalid"""
