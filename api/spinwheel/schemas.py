from pydantic import BaseModel, EmailStr, Field
from datetime import date
from typing import Literal, Optional, List

Phase = Literal["idle", "spinning", "resolved", "registered"]

class SpinStartResponse(BaseModel):
    session_id: str
    phase: Phase
    terminal_angle: float
    min_revolutions: int
    spin_duration_seconds: float
    settle_delay_seconds: float

class SpinStatusResponse(BaseModel):
    session_id: str
    phase: Phase
    is_spinning: bool
    terminal_angle: Optional[float] = None
    prize_amount: Optional[int] = None

class RegisterRequest(BaseModel):
    # validated by the session itself so the core rejects bad input too
    email: str = Field(min_length=1, max_length=320)
    birthday: Optional[date] = None

class RegisterResponse(BaseModel):
    success: bool
    message: str
    prize_amount: int

class SaveEmailRequest(BaseModel):
    email: EmailStr
    prize_amount: int = Field(gt=0, alias="prizeAmount")
    birthday: Optional[date] = None
    class Config:
        populate_by_name = True

class SaveEmailResponse(BaseModel):
    success: bool
    message: str


class PrizeSegmentOut(BaseModel):
    min_degree: float
    max_degree: float
    amount: int

class PrizesResponse(BaseModel):
    amounts: List[int]
    segments: List[PrizeSegmentOut]
    probabilities: dict[int, float]

class EnvCheckResponse(BaseModel):
    status: str
    has_google_sheets_id: bool
    has_google_project_id: bool
    has_google_private_key_id: bool
    has_google_private_key: bool
    has_google_client_email: bool
    has_google_client_id: bool
    has_meta_pixel_id: bool
    has_meta_access_token: bool
    sheets_id_length: int
    project_id_preview: str
    client_email_preview: str
