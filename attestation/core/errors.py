"""Error taxonomy for the attestation layer.

Two families of failure exist:

  - Structural errors: the caller handed us something we cannot work with
    (a malformed attestation object, an id that is not an attestation id,
    an id routed to the wrong backend).  These are raised before any
    collaborator is touched.

  - Operation errors: a collaborator (identity, resource, wallet) failed
    while an operation was in flight.  The connector catches the
    collaborator error and re-raises the operation-level kind with the
    original error chained as ``__cause__``.

Soft verification outcomes (noData, proofFailed, revoked) are NOT errors.
``get()`` reports them as data on the returned information object.
"""

from __future__ import annotations


class AttestationError(Exception):
    """Base class for everything raised by the attestation layer.

    ``code`` is a stable, machine-readable identifier that the REST layer
    puts in the response ``detail`` and the CLI prints on failure.
    """

    code = "attestationError"

    def __init__(self, message: str | None = None, **details: object) -> None:
        super().__init__(message or self.code)
        self.details = details


class ValidationError(AttestationError, ValueError):
    """The attestation object or an argument failed structural validation."""

    code = "validationError"

    def __init__(
        self,
        message: str | None = None,
        failures: list[dict[str, str]] | None = None,
    ) -> None:
        super().__init__(message)
        self.failures = failures or []


class InvalidIdentifier(AttestationError, ValueError):
    code = "invalidIdentifier"


class NamespaceMismatch(AttestationError, ValueError):
    code = "namespaceMismatch"


class NoConnectors(AttestationError):
    code = "noConnectors"


class AttestingFailed(AttestationError):
    code = "attestingFailed"


class RetrievalFailed(AttestationError):
    code = "retrievalFailed"


class VerificationFailed(AttestationError):
    """Raised when a transfer is blocked because the attestation does not verify.

    ``reason`` holds the soft failure (noData, proofFailed, revoked) that
    ``get()`` reported.
    """

    code = "verificationFailed"

    def __init__(self, reason: str) -> None:
        super().__init__(f"attestation does not verify: {reason}", reason=reason)
        self.reason = reason


class TransferFailed(AttestationError):
    code = "transferFailed"


class DestroyFailed(AttestationError):
    code = "destroyFailed"
