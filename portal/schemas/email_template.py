from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from portal.models.email_template import TEMPLATE_CATEGORIES


class EmailTemplateBase(BaseModel):
    subject: Optional[str] = Field(None, min_length=1, max_length=255)
    html_body: Optional[str] = Field(None, min_length=1)
    text_body: Optional[str] = None
    description: Optional[str] = None
    variables: Optional[List[str]] = None
    is_active: Optional[bool] = None
    category: Optional[str] = None

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in TEMPLATE_CATEGORIES:
            raise ValueError(f"Invalid category. Must be one of: {TEMPLATE_CATEGORIES}")
        return v


class EmailTemplateCreate(EmailTemplateBase):
    name: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9-]+$")
    subject: str = Field(..., min_length=1, max_length=255)
    html_body: str = Field(..., min_length=1)


class EmailTemplateUpdate(EmailTemplateBase):
    pass


class EmailTemplateResponse(BaseModel):
    id: Optional[str] = None
    name: str
    subject: str
    html_body: str
    text_body: Optional[str] = None
    description: Optional[str] = None
    variables: List[str] = Field(default_factory=list)
    is_active: bool = True
    category: str = "notification"
    is_default: bool = False


class TemplatePreviewRequest(BaseModel):
    data: dict = Field(default_factory=dict)


class TemplatePreviewResponse(BaseModel):
    subject: str
    html: str
    text: str


class TemplateTestRequest(BaseModel):
    to: EmailStr
    data: dict = Field(default_factory=dict)
