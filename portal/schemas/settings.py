from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from portal.models.portal_settings import (
    PASSWORD_EXPIRY_CHOICES,
    RETENTION_DATE_TRIGGERS,
    RETENTION_PERIOD_CHOICES,
)


class SettingsResponse(BaseModel):
    company_name: str
    site_title: Optional[str] = None
    system_email: Optional[str] = None
    primary_color: str
    password_expiry_days: Optional[int] = None
    file_retention_days: int
    document_retention_period: Optional[int] = None
    document_retention_date_trigger: str
    only_external_users_change_document_status: bool
    queries_enabled: bool
    account_lockout_enabled: bool
    max_failed_login_attempts: int
    lockout_duration_minutes: int

    model_config = {"from_attributes": True}


class PublicSettingsResponse(BaseModel):
    company_name: str
    site_title: Optional[str] = None
    primary_color: str


class SettingsUpdate(BaseModel):
    company_name: Optional[str] = Field(None, min_length=1, max_length=255)
    site_title: Optional[str] = Field(None, max_length=255)
    system_email: Optional[EmailStr] = None
    primary_color: Optional[str] = Field(None, pattern=r"^#[0-9a-fA-F]{6}$")
    password_expiry_days: Optional[int] = None
    file_retention_days: Optional[int] = Field(None, ge=1, le=3650)
    document_retention_period: Optional[int] = None
    document_retention_date_trigger: Optional[str] = None
    only_external_users_change_document_status: Optional[bool] = None
    queries_enabled: Optional[bool] = None
    account_lockout_enabled: Optional[bool] = None
    max_failed_login_attempts: Optional[int] = Field(None, ge=1, le=20)
    lockout_duration_minutes: Optional[int] = Field(None, ge=1, le=1440)

    @field_validator("password_expiry_days")
    @classmethod
    def validate_password_expiry(cls, v: Optional[int]) -> Optional[int]:
        if v not in PASSWORD_EXPIRY_CHOICES:
            raise ValueError(f"Password expiry must be one of: {PASSWORD_EXPIRY_CHOICES}")
        return v

    @field_validator("document_retention_period")
    @classmethod
    def validate_retention_period(cls, v: Optional[int]) -> Optional[int]:
        if v not in RETENTION_PERIOD_CHOICES:
            raise ValueError(f"Retention period must be one of: {RETENTION_PERIOD_CHOICES}")
        return v

    @field_validator("document_retention_date_trigger")
    @classmethod
    def validate_trigger(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in RETENTION_DATE_TRIGGERS:
            raise ValueError(f"Retention date trigger must be one of: {RETENTION_DATE_TRIGGERS}")
        return v
