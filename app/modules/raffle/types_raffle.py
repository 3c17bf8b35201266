from enum import Enum


class RaffleStatusType(str, Enum):
    upcoming = "upcoming"  # Configured, tickets may already be sold unless the raffle is hidden until its start
    active = "active"  # Tickets can be purchased
    drawing = "drawing"  # A draw is running, no ticket can be added
    completed = "completed"  # Winners are selected, entries and winners are immutable
    cancelled = "cancelled"  # No ticket can be added and the raffle can not be drawn

    def __str__(self):
        return f"{self.name}<{self.value}"


class RaffleEntrySource(str, Enum):
    purchased = "purchased"
    manual = "manual"


class DrawAlgorithm(str, Enum):
    """
    Pseudo random generators used to select winners from the draw seed
    """

    lcg = "lcg"  # 48 bits linear congruential generator
    hmac_sha256 = "hmac_sha256"  # HMAC-SHA256 of a counter, keyed by the seed


class RaffleErrorKind(str, Enum):
    InvalidQuantity = "InvalidQuantity"
    NotFound = "NotFound"
    RaffleNotActive = "RaffleNotActive"
    RaffleNotStarted = "RaffleNotStarted"
    RaffleEnded = "RaffleEnded"
    SubscriberRequired = "SubscriberRequired"
    PerUserCapExceeded = "PerUserCapExceeded"
    SoldOut = "SoldOut"
    InsufficientBalance = "InsufficientBalance"
    InvalidWinnerCount = "InvalidWinnerCount"
    AlreadyDrawn = "AlreadyDrawn"
    NoEntries = "NoEntries"
    NoTickets = "NoTickets"
    InvalidRigging = "InvalidRigging"
    NotDrawn = "NotDrawn"
    Timeout = "Timeout"
    Unknown = "Unknown"
