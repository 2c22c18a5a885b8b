"""Error taxonomy shared by the resolver, gateway, sync engine and workflow.

Lower layers raise these. The components that own a public operation
(ConfigResolver, SyncEngine, ReconciliationWorkflow) catch them and turn them
into status fields or outcome records instead of propagating.
"""

from __future__ import annotations


class CaseSyncError(Exception):
    """Base class for casesync errors."""


class ConfigUnavailable(CaseSyncError):
    """No configuration tier produced a usable descriptor.

    This is a normal disabled state. The resolver returns a disabled
    descriptor; the gateway raises this when asked to call out anyway.
    """


class RemoteError(CaseSyncError):
    """A call to a remote HTTP service failed."""


class RemoteTimeout(RemoteError):
    """The remote did not answer within the configured timeout."""


class RemoteNetworkError(RemoteError):
    """The request never produced an HTTP response (DNS, connect, reset)."""


class RemoteRejected(RemoteError):
    """The remote answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str = "", path: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.path = path
        super().__init__(f"Remote API error: {status_code} {path} - {body[:200]}")


class LookupExhausted(CaseSyncError):
    """Amount resolution fell through to the placeholder amount."""


class ReconciliationPartial(CaseSyncError):
    """Payment applied upstream but the remote record-keeping failed."""

    def __init__(self, invoice_id: str, cause: BaseException | None = None) -> None:
        self.invoice_id = invoice_id
        self.cause = cause
        super().__init__(
            f"Invoice {invoice_id}: payment accepted by processor, "
            f"remote payment record not created ({cause})"
        )
