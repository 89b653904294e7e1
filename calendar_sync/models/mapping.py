"""Identity mapping models (primary attendee to secondary attendees)."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


class IdentityMapping(BaseModel):
    """One row of the mapping sheet or file."""

    primary: str = Field(..., description="Primary attendee email")
    secondaries: list[str] = Field(default_factory=list, description="Emails to add when the primary attends")
    status: Optional[str] = Field(None, description="Row status, rows marked inactive are skipped")

    @field_validator("primary")
    @classmethod
    def normalize_primary(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError(f"primary must be an email address, got '{v}'")
        return v

    @field_validator("secondaries")
    @classmethod
    def normalize_secondaries(cls, v: list[str]) -> list[str]:
        seen: list[str] = []
        for email in v:
            email = email.strip().lower()
            if "@" in email and email not in seen:
                seen.append(email)
        return seen

    @property
    def is_active(self) -> bool:
        return (self.status or "active").strip().lower() != "inactive"


class MappingsFile(BaseModel):
    """Root structure of the YAML mappings file."""

    mappings: list[IdentityMapping] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "mappings": [
                    {
                        "primary": "alice@example.com",
                        "secondaries": ["alice.assistant@example.com"],
                        "status": "active",
                    }
                ]
            }
        }
