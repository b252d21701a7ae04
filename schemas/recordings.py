from pydantic import BaseModel


class CreateRecordingRequest(BaseModel):
    userId: int
    roomId: int
    fileName: str
    duration: int

class RecordingResponse(BaseModel):
    id: int
    userId: int
    roomId: int
    fileName: str
    duration: int
    createdAt: str
