"""
Dependencies building the raffle services. Tests may override them to inject their own session factory.
"""

from fastapi import Depends

from app.core.points.ledger_points import PointsLedger
from app.core.utils.config import Settings
from app.dependencies import get_session_factory, get_settings
from app.modules.raffle.draw_raffle import DrawEngine
from app.modules.raffle.manual_entry_raffle import ManualEntryService
from app.modules.raffle.purchase_raffle import TicketPurchaseService
from app.types.sqlalchemy import SessionLocalType


def get_points_ledger() -> PointsLedger:
    return PointsLedger()


def get_ticket_purchase_service(
    session_factory: SessionLocalType = Depends(get_session_factory),
    ledger: PointsLedger = Depends(get_points_ledger),
    settings: Settings = Depends(get_settings),
) -> TicketPurchaseService:
    return TicketPurchaseService(
        session_factory=session_factory,
        ledger=ledger,
        settings=settings,
    )


def get_draw_engine(
    session_factory: SessionLocalType = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> DrawEngine:
    return DrawEngine(session_factory=session_factory, settings=settings)


def get_manual_entry_service(
    session_factory: SessionLocalType = Depends(get_session_factory),
    ledger: PointsLedger = Depends(get_points_ledger),
    settings: Settings = Depends(get_settings),
) -> ManualEntryService:
    return ManualEntryService(
        session_factory=session_factory,
        ledger=ledger,
        settings=settings,
    )
