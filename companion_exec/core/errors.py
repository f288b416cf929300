"""Bridge error hierarchy.

Everything the host bridge can fail with derives from BridgeError, so the
execution service catches exactly one type at its boundary.
"""


class BridgeError(Exception):
    """A host operation could not produce a result."""


class BridgeTimeoutError(BridgeError):
    """The operation did not finish within its fixed timeout."""


class ChannelError(BridgeError):
    """The message channel is unavailable or produced a malformed reply."""


class HostOperationError(BridgeError):
    """The host answered, but with an error instead of a result."""
