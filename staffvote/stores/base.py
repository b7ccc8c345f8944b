from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from .. import schemas


class StaffStore(ABC):
    """Durable staff roster. ``staff_id`` is unique across active and inactive rows."""

    @abstractmethod
    def create(
        self,
        staff_id: str,
        pin_hash: str,
        name: str,
        position: str,
        department: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> schemas.StaffMember:
        """Insert a staff member; raises ConflictError when ``staff_id`` is taken."""

    @abstractmethod
    def get(self, id: str) -> Optional[schemas.StaffMember]: ...

    @abstractmethod
    def get_by_staff_id(self, staff_id: str) -> Optional[schemas.StaffMember]: ...

    @abstractmethod
    def get_pin_hash(self, staff_id: str) -> Optional[str]: ...

    @abstractmethod
    def list_all(self) -> List[schemas.StaffMember]: ...

    @abstractmethod
    def list_active(self, exclude_staff_id: Optional[str] = None) -> List[schemas.StaffMember]: ...

    @abstractmethod
    def list_by_department(self, department: str) -> List[schemas.StaffMember]: ...

    @abstractmethod
    def update(
        self,
        id: str,
        name: str,
        position: str,
        department: str,
        email: Optional[str],
        phone: Optional[str],
        is_active: Optional[bool],
    ) -> Optional[schemas.StaffMember]:
        """Overwrite profile fields; ``is_active=None`` keeps the stored flag."""

    @abstractmethod
    def set_pin_hash(self, id: str, pin_hash: str) -> Optional[schemas.StaffMember]: ...

    @abstractmethod
    def delete(self, id: str) -> None:
        """Remove a staff member that no vote references.

        Raises NotFoundError if absent and ConflictError if a vote names the
        member as voter or candidate.
        """

    @abstractmethod
    def stats(self) -> schemas.StaffStats: ...


class CampaignStore(ABC):
    @abstractmethod
    def create(
        self,
        title: str,
        description: Optional[str],
        start_date: datetime,
        end_date: datetime,
    ) -> schemas.Campaign:
        """Insert an active, unpublished campaign."""

    @abstractmethod
    def get(self, id: str) -> Optional[schemas.Campaign]: ...

    @abstractmethod
    def update(
        self,
        id: str,
        title: str,
        description: Optional[str],
        start_date: datetime,
        end_date: datetime,
        is_active: Optional[bool],
    ) -> Optional[schemas.Campaign]: ...

    @abstractmethod
    def set_published(self, id: str, is_published: bool) -> Optional[schemas.Campaign]: ...

    @abstractmethod
    def delete(self, id: str) -> None:
        """Remove a campaign with no votes, atomically with respect to vote inserts.

        Raises NotFoundError if absent and ConflictError if any vote exists.
        """

    @abstractmethod
    def list_all(self) -> List[schemas.Campaign]:
        """All campaigns, newest created first."""

    @abstractmethod
    def list_votable(self, now: datetime) -> List[schemas.Campaign]:
        """Active, published campaigns whose window contains ``now``, newest first."""


class VoteStore(ABC):
    @abstractmethod
    def create(
        self,
        campaign_id: str,
        voter_staff_id: str,
        candidate_staff_id: str,
        reason: str,
    ) -> schemas.Vote:
        """Insert a vote.

        The store's unique constraint on (campaign, voter) is authoritative:
        a duplicate raises ConflictError even when the caller checked first.
        A campaign removed underneath the insert raises NotFoundError.
        """

    @abstractmethod
    def find(self, campaign_id: str, voter_staff_id: str) -> Optional[schemas.Vote]: ...

    @abstractmethod
    def get_for_voter(self, vote_id: str, voter_staff_id: str) -> Optional[schemas.Vote]: ...

    @abstractmethod
    def amend(self, vote_id: str, candidate_staff_id: str, reason: str) -> Optional[schemas.Vote]: ...

    @abstractmethod
    def my_vote(self, campaign_id: str, voter_staff_id: str) -> Optional[schemas.MyVote]: ...

    @abstractmethod
    def list_for_campaign(self, campaign_id: str) -> List[schemas.CampaignVote]:
        """Votes of a campaign with voter and candidate details, newest first."""

    @abstractmethod
    def tally(self, campaign_id: str) -> List[schemas.TallyRow]:
        """One row per active staff member, by vote count desc then name asc."""

    @abstractmethod
    def stats(self, campaign_id: str) -> schemas.CampaignStats: ...


class AdminStore(ABC):
    @abstractmethod
    def create(self, username: str, password_hash: str, email: Optional[str] = None) -> schemas.AdminAccount: ...

    @abstractmethod
    def get_by_username(self, username: str) -> Optional[schemas.AdminAccount]: ...

    @abstractmethod
    def get_password_hash(self, username: str) -> Optional[str]:
        """Hash for an active admin, None when unknown or inactive."""


@dataclass
class Stores:
    staff: StaffStore
    campaigns: CampaignStore
    votes: VoteStore
    admins: AdminStore
    close: Callable[[], None] = field(default=lambda: None)
