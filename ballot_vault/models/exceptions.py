class VaultError(Exception):
    """Base class for domain-specific errors."""

    pass


class AuthenticationError(VaultError):
    """Raised when an AEAD authentication tag does not verify."""

    pass


class DecryptionError(VaultError):
    """Raised when an asymmetric unwrap fails or ciphertext is malformed."""

    pass


class ValidationError(VaultError):
    """Raised when a vote record or an input value is malformed."""

    pass


class InvalidStateError(VaultError):
    """Raised when a tally is requested outside the 'ended' election state."""

    pass


class DuplicateResultError(VaultError):
    """Raised when results already exist for an election."""

    pass


class DuplicateVoteError(VaultError):
    """Raised when a voter already has a stored vote for an election."""

    pass


class NotFoundError(VaultError):
    """Raised when an election or its results cannot be found."""

    pass


class PermissionDeniedError(VaultError):
    """Raised when the caller's role may not perform an operation."""

    pass


class KeyMaterialError(VaultError):
    """Raised when persistent key material is expected but unavailable."""

    pass
