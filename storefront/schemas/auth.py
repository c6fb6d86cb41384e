from typing import Optional

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user_code: str
    display_name: str
    role: str
    branch_id: Optional[int] = None


class MeOut(BaseModel):
    user_code: str
    username: str
    display_name: str
    role: str
    branch_id: Optional[int] = None
