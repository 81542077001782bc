"""
Error Taxonomy

Every failure surfaced by kv-shard derives from KVError:

- KVConnectionError: socket-level failure (closed, refused, write failure)
- ProtocolError: the server's reply did not match the expected shape
- ResponseError: the server answered with an error reply
- NoSuchKeyError: a collection the command needed does not exist
- InvalidValueError: a value was well-formed but semantically wrong
- ClusterModeError: the operation cannot be served by a single connection

Connection and protocol errors are fatal for the in-flight operation.
NoSuchKeyError and InvalidValueError are ordinary outcomes callers branch on.
"""


class KVError(Exception):
    """Base class for all kv-shard errors."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class KVConnectionError(KVError):
    """Some socket-level I/O or general connection error."""


class ProtocolError(KVError):
    """The server gave us a reply we were not expecting."""


class ResponseError(ProtocolError):
    """The server answered with an error reply (``-ERR ...``)."""


class NoSuchKeyError(KVError):
    """A key that was expected to exist does not."""


class InvalidValueError(KVError):
    """A value of the expected type was found to be semantically invalid."""


class ClusterModeError(KVError):
    """The operation would span several connections and is rejected."""
