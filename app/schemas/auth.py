from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str
    expires_in: int  # seconds


class PasswordChange(BaseModel):
    oldPassword: str
    newPassword: str = Field(min_length=8)
