"""
Pydantic schemas for authentication endpoints (signup and login).

These schemas define the request/response contracts for the auth API.
Pydantic validates incoming data automatically. If a required field is
missing or the wrong type, FastAPI returns a 422 error before our code
even runs.
"""

import uuid

from pydantic import BaseModel, EmailStr, Field


class UserSignupRequest(BaseModel):
    """Request body for POST /auth/signup."""
    email: EmailStr
    username: str = Field(min_length=2, max_length=100)
    password: str = Field(min_length=8)
    full_name: str | None = Field(None, max_length=200)
    phone_number: str | None = Field(None, pattern=r"^\+?[0-9 ]{6,20}$")


class UserLoginRequest(BaseModel):
    """Request body for POST /auth/login."""
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    """Response body for successful login, carrying the JWT."""
    token: str
    token_type: str = "bearer"


class SignupResponse(BaseModel):
    """Response body for successful signup: user info plus the JWT."""
    user_id: uuid.UUID
    email: str
    username: str
    user_type: str
    token: str
    token_type: str = "bearer"
