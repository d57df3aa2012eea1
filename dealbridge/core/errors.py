"""Error taxonomy shared by the deal pipeline and the HTTP layer.

Every component raises a subclass of :class:`DealBridgeError`. The class
attributes ``kind`` and ``status_code`` decide how the orchestrator treats
the failure (retry or surface) and how the API renders it.
"""

from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
)

INVALID_INPUT = "InvalidInput"
NOT_FOUND = "NotFound"
TRANSIENT = "Transient"
POLICY_REJECTED = "PolicyRejected"
CONFLICT = "Conflict"
INTERNAL = "Internal"


class DealBridgeError(Exception):
    """Base class for all pipeline failures."""

    kind: str = INTERNAL
    status_code: int = HTTP_500_INTERNAL_SERVER_ERROR
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInputError(DealBridgeError):
    """Request input rejected before any external call."""

    kind = INVALID_INPUT
    status_code = HTTP_400_BAD_REQUEST


class InvalidCID(InvalidInputError):
    """The CID is not a well-formed content identifier."""


class EmptyPayload(InvalidInputError):
    """The content stream ended without yielding a single byte."""


class NotFoundError(DealBridgeError):
    """Something the request refers to does not exist."""

    kind = NOT_FOUND
    status_code = HTTP_404_NOT_FOUND


class ContentNotFound(NotFoundError):
    """The gateway has no content for the CID."""


class DealNotFound(NotFoundError):
    """No deal has been recorded for the CID."""


class TransientError(DealBridgeError):
    """An upstream service is temporarily unavailable."""

    kind = TRANSIENT
    status_code = HTTP_502_BAD_GATEWAY
    retryable = True


class GatewayUnreachable(TransientError):
    """The content gateway could not be reached."""


class GatewayError(TransientError):
    """The content gateway answered with a non-success status."""

    def __init__(self, message: str, upstream_status: int | None = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status


class StreamReadError(TransientError):
    """The content stream failed part way through."""


class ChainUnreachable(TransientError):
    """The chain API could not be reached or answered with an error."""


class ClientUnavailable(TransientError):
    """The deal-making client could not be invoked."""


class DealTimeout(TransientError):
    """The deal client did not answer in time.

    A proposal may already have been sent, so this is never re-submitted.
    """

    retryable = False


class PolicyRejectedError(DealBridgeError):
    """Deal terms or configuration rejected; needs operator action."""

    kind = POLICY_REJECTED
    status_code = HTTP_422_UNPROCESSABLE_ENTITY


class UnknownMiner(PolicyRejectedError):
    """The configured miner has no resolvable on-chain actor."""


class DealRejected(PolicyRejectedError):
    """The storage provider declined the deal terms."""


class WalletError(PolicyRejectedError):
    """The client wallet is missing or cannot fund the deal."""


class MinerNotConfigured(PolicyRejectedError):
    """No storage provider is configured."""


class AlreadyInFlight(DealBridgeError):
    """A pipeline for the CID is already running."""

    kind = CONFLICT
    status_code = HTTP_409_CONFLICT

    def __init__(self, cid: str) -> None:
        super().__init__(f"A deal for {cid} is already in progress")
        self.cid = cid
