"""Exception types raised at the collaborator and flow boundaries."""

from typing import Optional


class WalletChatError(Exception):
    """Base exception for the command engine."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class CollaboratorError(WalletChatError):
    """An external collaborator (price, fees, broadcast) failed."""

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, code)


class PriceUnavailableError(CollaboratorError):
    """The spot price could not be fetched."""


class FeeUnavailableError(CollaboratorError):
    """Fee estimates could not be fetched."""


class BroadcastError(CollaboratorError):
    """Signing or broadcasting a transaction failed.

    ``kind`` is one of ``insufficient_funds``, ``signing_failed``,
    ``network`` or ``invalid_address``.
    """

    KINDS = ("insufficient_funds", "signing_failed", "network", "invalid_address")

    def __init__(self, message: str, kind: str = "network"):
        if kind not in self.KINDS:
            kind = "network"
        self.kind = kind
        super().__init__(message, code=kind)


class FlowTransitionError(WalletChatError):
    """A caller asked the flow controller for a transition it does not allow."""

    def __init__(self, message: str, state: str = ""):
        self.state = state
        super().__init__(message, code="flow_transition")
