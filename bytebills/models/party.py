from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from .common import Text, TimeStamped, gen_id


class PartyDetails(BaseModel):
    """Issuer or recipient block printed on a document."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str
    address: Text = ""
    city: Text = ""
    country: Text = ""
    phone: Text = ""
    email: Text = ""
    logo: Optional[str] = None  # issuer only

    @classmethod
    def from_company(cls, company: "Company") -> "PartyDetails":
        # value copy: later company edits must not reach issued documents
        return cls(
            name=company.name,
            address=company.address or "",
            city=company.city or "",
            country=company.country or "",
            phone=company.phone or "",
            email=company.email or "",
            logo=company.logo,
        )

    def location(self) -> str:
        return ", ".join(p for p in (self.city, self.country) if p)


class Company(TimeStamped):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = Field(default_factory=gen_id)
    owner_id: str
    name: str
    address: Text = ""
    city: Text = ""
    country: Text = ""
    phone: Text = ""
    email: Text = ""
    logo: Optional[str] = None
    is_default: bool = False
