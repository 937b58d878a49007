"""
Errors raised while configuring, loading and querying the signature database.

Anything raised during load() is fatal: the database goes to the FAILED state
and never answers queries.
"""


class SignatureDatabaseError(Exception):
    """base class for every signature database error"""


class InvalidConfigurationError(SignatureDatabaseError, ValueError):
    """bad false-positive target, bad policy, or a source path that isn't a directory"""


# ── LOAD ERRORS ──────────────────

class SignatureLoadError(SignatureDatabaseError):
    """base class for errors that abort a load"""


class MalformedSignatureLineError(SignatureLoadError):

    def __init__(self, path, line_number, reason):
        self.path = path
        self.line_number = line_number
        self.reason = reason
        super().__init__(f"{path}:{line_number}: {reason}")


class SignatureIOError(SignatureLoadError):

    def __init__(self, path, cause):
        self.path = path
        self.cause = cause
        super().__init__(f"Cannot read {path}: {cause}")


class LoadCancelledError(SignatureLoadError):
    """the load was cancelled through its event or ran past its timeout"""


# ── QUERY ERRORS ──────────────────

class DatabaseStateError(SignatureDatabaseError):
    """
    raised when the database is used outside of its lifecycle:
    querying before it is READY, or loading it a second time
    """

    def __init__(self, state, message=None):
        self.state = state
        super().__init__(message or f"Signature database is {state.value}, not ready")
