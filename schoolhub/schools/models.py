"""
models.py — School (tenant) records and the settings patch inputs.

A School is the unit of multi-tenancy. It is reachable by id and by any of
its domain aliases (settings.domains).

═══════════════════════════════════════════════════════════════════════════
SETTINGS PATCH — TWO-LEVEL OPTIONALITY
═══════════════════════════════════════════════════════════════════════════

    UpdateSchoolSettingsInput
    ├── name / color / domains / ...      present → applied, absent → kept
    ├── contact_info   (group)            absent  → whole group kept
    │   └── email / phone / ...           present → applied, absent → kept
    └── pages          (group)            same as contact_info

"Present" means the key was supplied (pydantic tracks it in
model_fields_set), so an explicit "" or False is applied like any other
value. An explicit null is rejected: omit the key to leave a field alone.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Persisted record
# ═══════════════════════════════════════════════════════════════════════════

class ContactInfo(BaseModel):
    business_name: str = ""
    registration_number: str = ""
    address: str = ""
    email: str = ""
    phone: str = ""


class Pages(BaseModel):
    """Content of the legal pages shown on the school's site."""
    confidential: str = ""
    service_agreement: str = ""
    newsletter_consent: str = ""


class SchoolSettings(BaseModel):
    color: str = ""
    domains: List[str] = Field(default_factory=list)
    email: str = ""
    contact_info: ContactInfo = Field(default_factory=ContactInfo)
    pages: Pages = Field(default_factory=Pages)
    show_payment_images: bool = False
    google_analytics_code: str = ""
    logo_url: str = ""


class FondyCredentials(BaseModel):
    connected: bool = False
    merchant_id: str = ""
    merchant_password: str = Field("", repr=False)


class School(BaseModel):
    id: str
    name: str = ""
    description: str = ""
    registered_at: datetime = Field(default_factory=_utcnow)
    settings: SchoolSettings = Field(default_factory=SchoolSettings)
    fondy: FondyCredentials = Field(default_factory=FondyCredentials)

    def public_dict(self) -> Dict[str, Any]:
        """JSON-ready view without the gateway password."""
        return self.model_dump(mode="json", exclude={"fondy": {"merchant_password"}})


# ═══════════════════════════════════════════════════════════════════════════
# Patch inputs
# ═══════════════════════════════════════════════════════════════════════════

class _Patch(BaseModel):
    """Base for partial-update payloads: every field optional, presence tracked."""

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _reject_explicit_null(self) -> "_Patch":
        for name in self.model_fields_set:
            if getattr(self, name) is None:
                raise ValueError(f"'{name}' may be omitted but not null")
        return self

    def changes(self) -> Dict[str, Any]:
        """The explicitly supplied fields, in declaration order."""
        return {
            name: getattr(self, name)
            for name in type(self).model_fields
            if name in self.model_fields_set
        }


class UpdateSchoolSettingsContactInfo(_Patch):
    business_name: Optional[str] = None
    registration_number: Optional[str] = None
    address: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class UpdateSchoolSettingsPages(_Patch):
    confidential: Optional[str] = None
    service_agreement: Optional[str] = None
    newsletter_consent: Optional[str] = None


class UpdateSchoolSettingsInput(_Patch):
    name: Optional[str] = None
    color: Optional[str] = None
    domains: Optional[List[str]] = None
    email: Optional[str] = None
    contact_info: Optional[UpdateSchoolSettingsContactInfo] = None
    pages: Optional[UpdateSchoolSettingsPages] = None
    show_payment_images: Optional[bool] = None
    google_analytics_code: Optional[str] = None
    logo_url: Optional[str] = None


class ConnectFondyInput(BaseModel):
    school_id: str
    merchant_id: str = Field(..., min_length=1)
    merchant_password: str = Field(..., min_length=1, repr=False)
