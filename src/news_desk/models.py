"""Data models for the news desk pipeline."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


def new_record_id() -> str:
    return uuid4().hex


class Contact(BaseModel):
    """A person connected to a story, with a validated professional profile link."""

    name: str
    title: Optional[str] = None
    profile_link: Optional[str] = Field(
        None, validation_alias=AliasChoices("profile_link", "profileLink", "linkedin")
    )


class NewsRecord(BaseModel):
    """One discovered or extracted industry news story."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_record_id)
    date: str = ""
    company: str = Field(..., min_length=1)
    title: str = ""
    description: str = ""
    source: str = ""
    canonical_url: Optional[str] = Field(
        None, validation_alias=AliasChoices("canonical_url", "url")
    )
    verification_url: Optional[str] = Field(
        None, validation_alias=AliasChoices("verification_url", "verificationUrl")
    )
    user_url: Optional[str] = Field(
        None, description="Manual override; wins over discovered links when non-blank."
    )
    generated_image: Optional[str] = Field(
        None, description="data:image/png;base64,... illustration."
    )
    contacts: List[Contact] = Field(default_factory=list)

    @property
    def display_url(self) -> Optional[str]:
        """Link used for display and generation: user override, then canonical, then verification."""
        if self.user_url and self.user_url.strip():
            return self.user_url.strip()
        return self.canonical_url or self.verification_url


class GroundingSource(BaseModel):
    """A web citation returned alongside a grounded search response."""

    uri: str
    title: str = ""


class ReportStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    SUCCESS = "success"
    ERROR = "error"


class GeneratedReport(BaseModel):
    """A generated markdown report awaiting review and publishing."""

    title: str
    file_name: str
    content: str
    status: ReportStatus = ReportStatus.PENDING
    error_message: Optional[str] = None
    record_id: Optional[str] = None


class PublishConfig(BaseModel):
    """Target repository for report publishing."""

    credential: str = ""
    owner: str = Field(..., min_length=1)
    repository: str = Field(..., min_length=1)
    base_path: str = ""
