from typing import List, Optional

from fastapi import APIRouter, Depends, status

from .. import schemas
from ..dependencies import (
    get_campaign_service,
    get_current_user,
    get_vote_service,
    require_role,
)
from ..services import CampaignService, VoteService

router = APIRouter(prefix="/votes", tags=["Votes"])


@router.post("/", response_model=schemas.Vote, status_code=status.HTTP_201_CREATED)
def cast_vote(
    vote_in: schemas.VoteCreate,
    service: VoteService = Depends(get_vote_service),
    current_user: schemas.Principal = Depends(require_role("staff")),
):
    """Cast the caller's single vote in a campaign."""
    return service.cast_vote(
        campaign_id=vote_in.campaign_id,
        voter_staff_id=current_user.sub,
        candidate_staff_id=vote_in.candidate_staff_id,
        reason=vote_in.reason,
    )


@router.put("/{vote_id}", response_model=schemas.Vote)
def amend_vote(
    vote_id: str,
    vote_in: schemas.VoteAmend,
    service: VoteService = Depends(get_vote_service),
    current_user: schemas.Principal = Depends(require_role("staff")),
):
    """Change candidate and reason while the campaign is open."""
    return service.amend_vote(
        vote_id,
        voter_staff_id=current_user.sub,
        candidate_staff_id=vote_in.candidate_staff_id,
        reason=vote_in.reason,
    )


@router.get("/my-vote/{campaign_id}", response_model=Optional[schemas.MyVote])
def my_vote(
    campaign_id: str,
    service: VoteService = Depends(get_vote_service),
    current_user: schemas.Principal = Depends(require_role("staff")),
):
    """The caller's vote in a campaign, or null if they have not voted."""
    return service.my_vote(campaign_id, current_user.sub)


@router.get("/results/{campaign_id}", response_model=schemas.PublicResults)
def public_results(
    campaign_id: str,
    service: CampaignService = Depends(get_campaign_service),
    current_user=Depends(get_current_user),
):
    """Results of a published campaign that has ended."""
    return service.public_results(campaign_id)


@router.get("/stats/{campaign_id}", response_model=schemas.CampaignStats)
def vote_stats(
    campaign_id: str,
    service: CampaignService = Depends(get_campaign_service),
    current_user: schemas.Principal = Depends(get_current_user),
):
    return service.stats(campaign_id, published_only=current_user.role == "staff")


@router.get("/campaign/{campaign_id}", response_model=List[schemas.CampaignVote])
def campaign_votes(
    campaign_id: str,
    service: VoteService = Depends(get_vote_service),
    current_user=Depends(require_role("admin")),
):
    """Every vote of a campaign with voter and candidate details."""
    return service.list_campaign_votes(campaign_id)
