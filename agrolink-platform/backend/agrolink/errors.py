# agrolink/errors.py


class WatcherError(Exception):
    """Base class for chain sync failures."""


class ConfigurationError(WatcherError):
    """Provider URL or contract address is missing."""


class ChainConnectionError(WatcherError):
    """The RPC endpoint could not be reached at startup."""


class EventDecodeError(WatcherError):
    """A raw event could not be turned into a ChainEvent."""
