"""Error taxonomy for the relay.

None of these are fatal to the process. Each is raised at the point of
failure and recovered at the store or session boundary.
"""


class RelayError(Exception):
    """Base class for relay errors."""


class ParseError(RelayError):
    """Inbound frame is not a JSON object."""


class DeserializeError(RelayError):
    """A `full` payload is not a valid Document encoding."""


class PersistError(RelayError):
    """Snapshot could not be written to disk."""


class SendError(RelayError):
    """A message could not be delivered to one connection."""


class LoadError(RelayError):
    """Snapshot on disk is unreadable or corrupt."""
