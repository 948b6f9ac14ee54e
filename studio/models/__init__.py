from studio.models.history import HistoryRecord, ShotRecord
from studio.models.usage import UsageLedger

__all__ = ["HistoryRecord", "ShotRecord", "UsageLedger"]
