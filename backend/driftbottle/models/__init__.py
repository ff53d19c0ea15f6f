from driftbottle.models.history_blob import HistoryBlob

__all__ = ["HistoryBlob"]
