from pydantic import BaseModel

from schemas.signaling import CallRecord, OfflineMessage, Stats


class CallHistoryResponse(BaseModel):
    success: bool = True
    data: list[CallRecord]
    stats: Stats


class OfflineMessagesResponse(BaseModel):
    success: bool = True
    data: list[OfflineMessage]
