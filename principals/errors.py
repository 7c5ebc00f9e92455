# =============================================================================
# principals/errors.py - Principal resolution errors
# =============================================================================


class PrincipalResolutionError(Exception):
    """Base class for principal resolution failures"""


class DirectoryUnavailableError(PrincipalResolutionError):
    """The host has no usable directory context (not domain-joined, bind failed)"""


class InvalidDomainError(PrincipalResolutionError, ValueError):
    """A domain name is empty or malformed"""

    def __init__(self, domain: str, reason: str = "malformed domain name"):
        self.domain = domain
        super().__init__(f"Invalid domain '{domain}': {reason}")


class DirectoryQueryError(PrincipalResolutionError):
    """Transport, connectivity or timeout failure while querying the directory"""

    def __init__(self, message: str, search_filter: str = "", scope: str = ""):
        self.search_filter = search_filter
        self.scope = scope
        super().__init__(message)


class OperationCancelledError(PrincipalResolutionError):
    """The transformation run was cancelled before a directory query started"""


class UnresolvedPrincipalError(PrincipalResolutionError):
    """Raised by callers whose configuration forbids unresolved principals"""

    def __init__(self, principal: str):
        self.principal = principal
        super().__init__(f"Principal '{principal}' could not be resolved")
