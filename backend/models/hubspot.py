"""
HubSpot response DTOs.

Every HubSpot response the audience client consumes is parsed into one of
these models; anything that does not validate is treated as an external
service failure rather than propagated as missing data.
"""
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import List, Optional


class HubSpotObject(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str


class ContactSearchResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    total: int = 0
    results: List[HubSpotObject] = []


class PagingNext(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    after: str


class Paging(BaseModel):
    model_config = ConfigDict(extra="ignore")

    next: Optional[PagingNext] = None


class Membership(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    record_id: str = Field(alias="recordId")


class MembershipPage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    results: List[Membership] = []
    paging: Optional[Paging] = None

    @property
    def next_after(self) -> Optional[str]:
        if self.paging and self.paging.next:
            return self.paging.next.after
        return None


class CreatedList(BaseModel):
    """List creation returns either {"list": {"listId": ...}} or a bare list object"""
    model_config = ConfigDict(extra="ignore")

    list_id: str

    @model_validator(mode="before")
    @classmethod
    def unwrap(cls, data):
        if not isinstance(data, dict):
            return data
        payload = data.get("list") if isinstance(data.get("list"), dict) else data
        list_id = payload.get("listId") or payload.get("id")
        if list_id in (None, ""):
            return {}
        return {"list_id": str(list_id)}
