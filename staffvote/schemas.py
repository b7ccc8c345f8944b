from pydantic import BaseModel, EmailStr, Field, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Optional, List, Literal, Union
from datetime import datetime


class CamelModel(BaseModel):
    """Fields are snake_case in Python and camelCase on the wire (both accepted on input)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ======================
# STAFF
# ======================

class StaffMember(CamelModel):
    id: str
    staff_id: str = Field(..., examples=["EMP001"])
    name: str = Field(..., examples=["Sarah Johnson"])
    position: str = Field(..., examples=["Server"])
    department: str = Field(..., examples=["Front of House"])
    email: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StaffCreate(CamelModel):
    staff_id: str = Field(..., examples=["EMP006"])
    pin: str = Field(..., examples=["4821"])
    name: str
    position: str
    department: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, examples=["555-0106"])


class SimpleStaffCreate(CamelModel):
    staff_id: str = Field(..., alias="id", examples=["EMP007"])
    pin: str = Field(..., alias="prn", examples=["1357"])
    name: str


class StaffUpdate(CamelModel):
    name: str
    position: str
    department: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    is_active: Optional[bool] = None


class PinReset(CamelModel):
    staff: StaffMember
    new_pin: str


class StaffStats(CamelModel):
    total_staff: int
    active_staff: int
    inactive_staff: int
    departments: int


# ======================
# AUTH
# ======================

class AdminAccount(CamelModel):
    id: str
    username: str
    email: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None


class StaffLogin(CamelModel):
    staff_id: str = Field(..., examples=["EMP001"])
    pin: str = Field(..., examples=["1234"])


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Union[StaffMember, AdminAccount]


class Principal(BaseModel):
    sub: str                    # admin username or staff_id
    role: Literal["admin", "staff"]
    name: Optional[str] = None
    exp: Optional[int] = None


# ======================
# CAMPAIGNS
# ======================

class Campaign(CamelModel):
    id: str
    title: str
    description: Optional[str] = None
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    is_published: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_votable(self, now: datetime) -> bool:
        """Open for votes: active, published and inside its window."""
        return self.is_active and self.is_published and self.start_date <= now <= self.end_date

    def is_viewable(self, now: datetime) -> bool:
        """Results may be shown to staff: published and already over."""
        return self.is_published and now > self.end_date


class CampaignCreate(CamelModel):
    title: str = Field(..., examples=["Employee of the Month - March"])
    description: Optional[str] = None
    start_date: datetime
    end_date: datetime


class CampaignUpdate(CampaignCreate):
    is_active: Optional[bool] = None


class PublishRequest(CamelModel):
    is_published: bool


# ======================
# VOTING
# ======================

class VoteCreate(CamelModel):
    campaign_id: str
    candidate_staff_id: str = Field(..., examples=["EMP002"])
    reason: str = Field(..., examples=["Always covers shifts without being asked."])


class VoteAmend(CamelModel):
    candidate_staff_id: str
    reason: str


class Vote(CamelModel):
    id: str
    campaign_id: str
    voter_staff_id: str
    candidate_staff_id: str
    reason: str
    created_at: Optional[datetime] = None


class MyVote(Vote):
    campaign_title: Optional[str] = None
    candidate_name: Optional[str] = None
    candidate_position: Optional[str] = None
    candidate_department: Optional[str] = None


class CampaignVote(MyVote):
    voter_name: Optional[str] = None
    voter_position: Optional[str] = None
    voter_department: Optional[str] = None


# ======================
# RESULTS
# ======================

class TallyRow(CamelModel):
    staff_id: str
    name: str
    position: str
    department: str
    vote_count: int = 0
    reasons: List[str] = []


class CampaignStats(CamelModel):
    total_votes: int
    unique_voters: int
    candidates: int
    total_staff: int


class PublicResults(CamelModel):
    campaign: Campaign
    results: List[TallyRow]
