from pydantic import BaseModel, EmailStr, Field


class ProfileUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class ProfilePasswordChange(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class EmailChangeRequest(BaseModel):
    new_email: EmailStr
