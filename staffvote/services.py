import logging
import re
import secrets
from datetime import datetime
from typing import Callable, List, Optional

from . import schemas
from .auth import get_password_hash
from .exceptions import ConflictError, NotFoundError, ValidationError
from .stores import CampaignStore, StaffStore, VoteStore
from .timeutils import to_utc, utcnow

logger = logging.getLogger(__name__)

MIN_REASON_LENGTH = 10
PIN_PATTERN = re.compile(r"^\d{4}$")

Clock = Callable[[], datetime]


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def _clean_reason(reason: Optional[str]) -> str:
    cleaned = (reason or "").strip()
    if len(cleaned) < MIN_REASON_LENGTH:
        raise ValidationError(f"Reason must be at least {MIN_REASON_LENGTH} characters long")
    return cleaned


class CampaignService:
    """
    Campaign lifecycle: creation with a future window, edits, publish toggling,
    guarded deletion, and the result/stat views built on the vote store.
    """

    def __init__(self, campaigns: CampaignStore, votes: VoteStore, clock: Clock = utcnow):
        self.campaigns = campaigns
        self.votes = votes
        self.clock = clock

    def _validate_window(self, title, start_date, end_date) -> None:
        if _blank(title) or start_date is None or end_date is None:
            raise ValidationError("Title, start date, and end date are required")
        if to_utc(end_date) <= to_utc(start_date):
            raise ValidationError("End date must be after start date")

    def create(
        self,
        title: str,
        description: Optional[str],
        start_date: datetime,
        end_date: datetime,
    ) -> schemas.Campaign:
        self._validate_window(title, start_date, end_date)
        if to_utc(start_date) <= self.clock():
            raise ValidationError("Start date must be in the future")

        campaign = self.campaigns.create(
            title=title.strip(),
            description=description or None,
            start_date=to_utc(start_date),
            end_date=to_utc(end_date),
        )
        logger.info(f"Campaign created: {campaign.id} {campaign.title!r}")
        return campaign

    def update(
        self,
        campaign_id: str,
        title: str,
        description: Optional[str],
        start_date: datetime,
        end_date: datetime,
        is_active: Optional[bool] = None,
    ) -> schemas.Campaign:
        # No future-start check here: live and past campaigns stay editable
        self._validate_window(title, start_date, end_date)
        campaign = self.campaigns.update(
            campaign_id,
            title=title.strip(),
            description=description or None,
            start_date=to_utc(start_date),
            end_date=to_utc(end_date),
            is_active=is_active,
        )
        if campaign is None:
            raise NotFoundError("Campaign not found")
        logger.info(f"Campaign updated: {campaign_id}")
        return campaign

    def set_published(self, campaign_id: str, is_published: bool) -> schemas.Campaign:
        campaign = self.campaigns.set_published(campaign_id, bool(is_published))
        if campaign is None:
            raise NotFoundError("Campaign not found")
        logger.info(f"Campaign {campaign_id} {'published' if is_published else 'unpublished'}")
        return campaign

    def delete(self, campaign_id: str) -> None:
        self.campaigns.delete(campaign_id)
        logger.info(f"Campaign deleted: {campaign_id}")

    def get(self, campaign_id: str) -> schemas.Campaign:
        campaign = self.campaigns.get(campaign_id)
        if campaign is None:
            raise NotFoundError("Campaign not found")
        return campaign

    def get_published(self, campaign_id: str) -> schemas.Campaign:
        """Staff view of a campaign; drafts look the same as missing ones."""
        campaign = self.campaigns.get(campaign_id)
        if campaign is None or not campaign.is_published:
            raise NotFoundError("Campaign not found")
        return campaign

    def list_all(self) -> List[schemas.Campaign]:
        return self.campaigns.list_all()

    def list_published(self) -> List[schemas.Campaign]:
        return [c for c in self.campaigns.list_all() if c.is_published]

    def list_votable(self) -> List[schemas.Campaign]:
        return self.campaigns.list_votable(self.clock())

    def results(self, campaign_id: str) -> List[schemas.TallyRow]:
        """Admin tally; available before the campaign closes."""
        self.get(campaign_id)
        return self.votes.tally(campaign_id)

    def stats(self, campaign_id: str, published_only: bool = False) -> schemas.CampaignStats:
        if published_only:
            self.get_published(campaign_id)
        else:
            self.get(campaign_id)
        return self.votes.stats(campaign_id)

    def public_results(self, campaign_id: str) -> schemas.PublicResults:
        """Staff-facing tally, only once the campaign is published and over."""
        campaign = self.campaigns.get(campaign_id)
        if campaign is None or not campaign.is_viewable(self.clock()):
            raise ValidationError("Campaign results are not yet available")
        return schemas.PublicResults(campaign=campaign, results=self.votes.tally(campaign_id))


class VoteService:
    """Vote admission control: one vote per staff member per campaign, never for oneself."""

    def __init__(
        self,
        campaigns: CampaignStore,
        staff: StaffStore,
        votes: VoteStore,
        clock: Clock = utcnow,
    ):
        self.campaigns = campaigns
        self.staff = staff
        self.votes = votes
        self.clock = clock

    def _validate_choice(self, voter_staff_id: str, candidate_staff_id: str) -> None:
        if voter_staff_id == candidate_staff_id:
            raise ValidationError("You cannot vote for yourself")

    def _require_active_voter(self, voter_staff_id: str) -> None:
        # Tokens outlive deactivation; checked on every vote
        voter = self.staff.get_by_staff_id(voter_staff_id)
        if voter is None or not voter.is_active:
            raise ValidationError("Voter not found or inactive")

    def _require_active_candidate(self, candidate_staff_id: str) -> None:
        candidate = self.staff.get_by_staff_id(candidate_staff_id)
        if candidate is None or not candidate.is_active:
            raise ValidationError("Candidate not found or inactive")

    def _votable_campaign(self, campaign_id: str, message: str) -> schemas.Campaign:
        campaign = self.campaigns.get(campaign_id)
        if campaign is None or not campaign.is_votable(self.clock()):
            raise ValidationError(message)
        return campaign

    def cast_vote(
        self,
        campaign_id: str,
        voter_staff_id: str,
        candidate_staff_id: str,
        reason: str,
    ) -> schemas.Vote:
        """
        Cast a vote after all admission checks.

        Raises:
            ValidationError: short reason, self-vote, voter or candidate
                missing or inactive, campaign not votable
            ConflictError: the voter already voted in this campaign
        """
        if _blank(campaign_id) or _blank(candidate_staff_id):
            raise ValidationError("Campaign ID, candidate staff ID, and reason are required")
        cleaned = _clean_reason(reason)
        self._validate_choice(voter_staff_id, candidate_staff_id)
        self._require_active_voter(voter_staff_id)
        self._votable_campaign(campaign_id, "Campaign is not active or not found")
        self._require_active_candidate(candidate_staff_id)

        # Friendly early answer; the store's unique constraint is what actually holds
        if self.votes.find(campaign_id, voter_staff_id) is not None:
            raise ConflictError("You have already voted in this campaign")

        try:
            vote = self.votes.create(campaign_id, voter_staff_id, candidate_staff_id, cleaned)
        except NotFoundError as exc:
            raise ValidationError("Campaign is not active or not found") from exc

        logger.info(f"Vote {vote.id} cast in campaign {campaign_id} by {voter_staff_id}")
        return vote

    def amend_vote(
        self,
        vote_id: str,
        voter_staff_id: str,
        candidate_staff_id: str,
        reason: str,
    ) -> schemas.Vote:
        """Change candidate and reason while the campaign is still open."""
        if _blank(candidate_staff_id):
            raise ValidationError("Candidate staff ID and reason are required")
        cleaned = _clean_reason(reason)

        vote = self.votes.get_for_voter(vote_id, voter_staff_id)
        if vote is None:
            raise NotFoundError("Vote not found or not authorized")
        self._votable_campaign(vote.campaign_id, "Campaign is no longer active")
        self._validate_choice(voter_staff_id, candidate_staff_id)
        self._require_active_voter(voter_staff_id)
        self._require_active_candidate(candidate_staff_id)

        amended = self.votes.amend(vote_id, candidate_staff_id, cleaned)
        if amended is None:
            raise NotFoundError("Vote not found or not authorized")
        logger.info(f"Vote {vote_id} amended by {voter_staff_id}")
        return amended

    def my_vote(self, campaign_id: str, voter_staff_id: str) -> Optional[schemas.MyVote]:
        return self.votes.my_vote(campaign_id, voter_staff_id)

    def list_campaign_votes(self, campaign_id: str) -> List[schemas.CampaignVote]:
        return self.votes.list_for_campaign(campaign_id)


class StaffService:
    """Staff roster administration. PINs are hashed before they reach a store."""

    def __init__(self, staff: StaffStore):
        self.staff = staff

    @staticmethod
    def _validate_pin(pin: Optional[str]) -> str:
        pin = (pin or "").strip()
        if not PIN_PATTERN.match(pin):
            raise ValidationError("PIN must be exactly 4 digits")
        return pin

    def create(
        self,
        staff_id: str,
        pin: str,
        name: str,
        position: str,
        department: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> schemas.StaffMember:
        if any(_blank(v) for v in (staff_id, pin, name, position, department)):
            raise ValidationError("Staff ID, PIN, name, position, and department are required")
        pin = self._validate_pin(pin)

        member = self.staff.create(
            staff_id=staff_id.strip(),
            pin_hash=get_password_hash(pin),
            name=name.strip(),
            position=position.strip(),
            department=department.strip(),
            email=email or None,
            phone=phone or None,
        )
        logger.info(f"Staff member created: {member.staff_id}")
        return member

    def create_simple(self, staff_id: str, pin: str, name: str) -> schemas.StaffMember:
        return self.create(staff_id, pin, name, position="Staff Member", department="General")

    def get(self, id: str) -> schemas.StaffMember:
        member = self.staff.get(id)
        if member is None:
            raise NotFoundError("Staff member not found")
        return member

    def list_all(self) -> List[schemas.StaffMember]:
        return self.staff.list_all()

    def list_candidates(self, exclude_staff_id: Optional[str] = None) -> List[schemas.StaffMember]:
        return self.staff.list_active(exclude_staff_id=exclude_staff_id)

    def list_by_department(self, department: str) -> List[schemas.StaffMember]:
        return self.staff.list_by_department(department)

    def update(
        self,
        id: str,
        name: str,
        position: str,
        department: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> schemas.StaffMember:
        if any(_blank(v) for v in (name, position, department)):
            raise ValidationError("Name, position, and department are required")
        member = self.staff.update(
            id,
            name=name.strip(),
            position=position.strip(),
            department=department.strip(),
            email=email or None,
            phone=phone or None,
            is_active=is_active,
        )
        if member is None:
            raise NotFoundError("Staff member not found")
        logger.info(f"Staff member updated: {member.staff_id}")
        return member

    def reset_pin(self, id: str) -> schemas.PinReset:
        new_pin = str(secrets.randbelow(9000) + 1000)
        member = self.staff.set_pin_hash(id, get_password_hash(new_pin))
        if member is None:
            raise NotFoundError("Staff member not found")
        logger.info(f"PIN reset for staff member {member.staff_id}")
        return schemas.PinReset(staff=member, new_pin=new_pin)

    def delete(self, id: str) -> None:
        self.staff.delete(id)
        logger.info(f"Staff member deleted: {id}")

    def stats(self) -> schemas.StaffStats:
        return self.staff.stats()
