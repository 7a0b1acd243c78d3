from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import List, Optional

# -- Request --

# session creation (camelCase accepted for the existing web client)
class CreateSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = None
    test_topic: Optional[str] = Field(None, alias="testTopic", description="discussion topic")
    ai_count: int = Field(0, alias="aiCount", ge=0, le=3, description="number of AI seats")
    instructions: Optional[str] = None

class JoinSessionRequest(BaseModel):
    code: Optional[str] = None
    user_id: Optional[str] = None
    username: Optional[str] = None

class SessionCodeRequest(BaseModel):
    code: Optional[str] = None

class MarkReadyRequest(BaseModel):
    session_id: Optional[str] = None
    user_id: Optional[str] = None

# one speech-to-text segment, offsets in seconds from the recording start
class TranscriptSegmentIn(BaseModel):
    start: float = Field(..., ge=0)
    end: Optional[float] = Field(None, ge=0)
    text: str = ""

class SubmitTranscriptRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = None
    user_id: Optional[str] = None
    transcript: Optional[List[TranscriptSegmentIn]] = None
    start_at: Optional[datetime] = Field(None, alias="startAt")

class RecordingStartRequest(BaseModel):
    session_id: str
    mode: Optional[str] = Field(None, description="individual | composite; both when omitted")
    token: Optional[str] = None

class RecordingStopRequest(BaseModel):
    session_id: str
    mode: str = Field(..., description="individual | composite")
    cname: Optional[str] = None
    uid: Optional[str] = None

# database webhook body: {"record": {"session_id": ...}}
class WebhookRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    session_id: Optional[str] = None

class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    record: WebhookRecord = Field(default_factory=WebhookRecord)


# -- Response --

class CreateSessionResponse(BaseModel):
    session_id: str
    session_code: str

class ParticipantOut(BaseModel):
    user_id: Optional[str] = None
    username: Optional[str] = None
    is_ai: bool
    ready: bool
    joined_at: Optional[datetime] = None

class SessionStatusResponse(BaseModel):
    session_id: str
    session_code: str
    test_topic: str
    instructions: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    preparation_start_time: Optional[datetime] = None
    discussion_start_time: Optional[datetime] = None
    remaining: Optional[int] = None
    transcript_merged: bool
    participants: List[ParticipantOut]

class MergedTranscriptResponse(BaseModel):
    session_id: str
    merged_transcript: str
    created_at: Optional[datetime] = None
