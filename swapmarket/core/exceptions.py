class SwapMarketError(Exception):
    """Base class for errors raised by the trade and messaging engine."""

    status_code = 500

    def __init__(self, detail: str = "Unexpected error"):
        super().__init__(detail)
        self.detail = detail


class PreconditionViolation(SwapMarketError):
    """The operation is not allowed in the current state; nothing was written."""

    status_code = 400


class PermissionDenied(SwapMarketError):
    status_code = 403


class NotFoundError(SwapMarketError):
    status_code = 404


class CouplingInconsistency(SwapMarketError):
    """
    Raised when an accepted offer could not move both of its items to traded.

    The offer stays accepted with ``items_settled`` false; the reconciler
    picks it up later.
    """

    status_code = 500

    def __init__(self, detail: str, trade_offer_id: str):
        super().__init__(detail)
        self.trade_offer_id = trade_offer_id


class NotificationDeliveryFailure(SwapMarketError):
    """Notification record or push alert could not be delivered."""
