"""Exceptions raised by release steps. The CLI turns these into exit code 1."""


class ReleaseError(Exception):
    """Base class for every expected release failure."""


class PreconditionError(ReleaseError):
    """A required file, credential or tool is missing."""


class VersionMismatchError(ReleaseError):
    """Two sources disagree about a component version."""

    def __init__(self, component, expected, actual):
        self.component = component
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{component} version mismatch: manifest says {expected!r}, "
            f"plugin declares {actual!r}"
        )


class VersionOrderError(ReleaseError):
    """The derived bundle version would go backwards."""


class SigningIdentityError(ReleaseError):
    """No usable code-signing identity in the keychain."""


class SigningOrderError(ReleaseError):
    """A signing transition was attempted out of leaf-to-root order."""


class NotarizationError(ReleaseError):
    """The notary service rejected the artifact or did not answer in time."""

    def __init__(self, message, submission_id=None, status=None):
        self.submission_id = submission_id
        self.status = status
        super().__init__(message)
