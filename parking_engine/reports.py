from decimal import Decimal
from typing import Iterable

from parking_engine.billing import elapsed
from parking_engine.models import SessionHistory


def summarize_sessions(sessions: Iterable[SessionHistory]) -> dict:
    """Сводка по сессиям пользователя"""
    sessions = list(sessions)
    completed = [s for s in sessions if not s.is_active and s.exit_time is not None]
    total_revenue = sum((s.cost or Decimal("0")) for s in sessions)
    total_minutes = sum(elapsed(s.entry_time, s.exit_time)[0] for s in completed)

    return {
        "total_sessions": len(sessions),
        "active_sessions": sum(1 for s in sessions if s.is_active),
        "total_revenue": round(float(total_revenue), 2),
        "average_minutes": total_minutes // len(completed) if completed else 0,
    }
