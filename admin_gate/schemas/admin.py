from pydantic import BaseModel
from typing import Optional

class AdminCredentialsIn(BaseModel):
    email: str
    password: str

class AdminCodeIn(BaseModel):
    code: str

class AdminVerifyStepOut(BaseModel):
    status: str
    next_step: Optional[str] = None
    expires_in_seconds: int = 0
    resend_after_seconds: int = 0

class AdminVerifyStatusOut(BaseModel):
    phase: str
    expires_in_seconds: int

class AdminSessionOut(BaseModel):
    email: str
    role: str
    expires_at: int
