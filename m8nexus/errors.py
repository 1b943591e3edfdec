class NexusError(Exception):
    """Base class for m8nexus-specific errors."""


# Corrupt or foreign input
class FormatError(NexusError, ValueError):
    """Input bytes are not a well-formed artifact."""


class BadMagicError(FormatError):
    pass


class TruncatedError(FormatError):
    pass


class UnsupportedVersionError(FormatError):
    pass


class UnknownContentTypeError(FormatError):
    pass


class HashMismatchError(FormatError):
    pass


# Collaborator failures
class EngineError(NexusError):
    """The external memory engine failed or did not answer in time."""


# Sealed envelopes
class SealError(NexusError):
    """Wrong password or tampered sealed envelope."""
