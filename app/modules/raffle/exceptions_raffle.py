"""
Exceptions raised by the raffle services inside their transaction.

Raising one of them rolls the transaction back. The services boundary converts them to failed results,
they are never raised to the endpoints.
"""

from app.modules.raffle.types_raffle import RaffleErrorKind, RaffleStatusType


class RaffleError(Exception):
    kind: RaffleErrorKind = RaffleErrorKind.Unknown

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidQuantityError(RaffleError):
    kind = RaffleErrorKind.InvalidQuantity

    def __init__(self, quantity: int):
        super().__init__(f"Quantity must be a positive integer, got {quantity}")


class RaffleNotFoundError(RaffleError):
    kind = RaffleErrorKind.NotFound

    def __init__(self, raffle_id: int):
        super().__init__(f"Raffle {raffle_id} not found")


class UserNotFoundError(RaffleError):
    kind = RaffleErrorKind.NotFound

    def __init__(self, user: int | str):
        super().__init__(f"User {user} not found")


class RaffleNotActiveError(RaffleError):
    kind = RaffleErrorKind.RaffleNotActive

    def __init__(self, status: RaffleStatusType):
        super().__init__(f"Raffle is not active (status: {status.value})")


class RaffleNotStartedError(RaffleError):
    kind = RaffleErrorKind.RaffleNotStarted

    def __init__(self):
        super().__init__("Raffle has not started yet")


class RaffleEndedError(RaffleError):
    kind = RaffleErrorKind.RaffleEnded

    def __init__(self):
        super().__init__("Raffle has ended")


class SubscriberRequiredError(RaffleError):
    kind = RaffleErrorKind.SubscriberRequired

    def __init__(self):
        super().__init__("This raffle is only available to subscribers")


class PerUserCapExceededError(RaffleError):
    kind = RaffleErrorKind.PerUserCapExceeded

    def __init__(self, max_tickets: int, current_tickets: int):
        remaining = max(max_tickets - current_tickets, 0)
        super().__init__(
            f"Maximum {max_tickets} tickets per user. You already have {current_tickets} tickets, you can get {remaining} more.",
        )
        self.remaining = remaining


class SoldOutError(RaffleError):
    kind = RaffleErrorKind.SoldOut

    def __init__(self, remaining: int):
        super().__init__(
            f"Raffle is sold out. Only {max(remaining, 0)} tickets remaining.",
        )
        self.remaining = max(remaining, 0)


class InsufficientBalanceError(RaffleError):
    kind = RaffleErrorKind.InsufficientBalance

    def __init__(self, balance: int, total_cost: int):
        super().__init__(
            f"Insufficient points. You need {total_cost} points but only have {balance}.",
        )


class InvalidWinnerCountError(RaffleError):
    kind = RaffleErrorKind.InvalidWinnerCount

    def __init__(self, number_of_winners: int):
        super().__init__(
            f"Number of winners must be a positive integer, got {number_of_winners}",
        )


class AlreadyDrawnError(RaffleError):
    kind = RaffleErrorKind.AlreadyDrawn

    def __init__(self, raffle_id: int):
        super().__init__(f"Raffle {raffle_id} has already been drawn")


class NoEntriesError(RaffleError):
    kind = RaffleErrorKind.NoEntries

    def __init__(self):
        super().__init__("No entries in this raffle")


class NoTicketsError(RaffleError):
    kind = RaffleErrorKind.NoTickets

    def __init__(self):
        super().__init__("No tickets in this raffle")


class InvalidRiggingError(RaffleError):
    kind = RaffleErrorKind.InvalidRigging


class NotDrawnError(RaffleError):
    kind = RaffleErrorKind.NotDrawn

    def __init__(self, raffle_id: int):
        super().__init__(f"Raffle {raffle_id} has not been drawn yet")
