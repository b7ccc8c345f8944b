from typing import List

from fastapi import APIRouter, Depends, status

from .. import schemas
from ..dependencies import get_campaign_service, get_current_user, require_role
from ..services import CampaignService

router = APIRouter(prefix="/campaigns", tags=["Campaigns"])


@router.get("/", response_model=List[schemas.Campaign])
def list_campaigns(
    service: CampaignService = Depends(get_campaign_service),
    current_user: schemas.Principal = Depends(get_current_user),
):
    """All campaigns, newest first. Staff only see published ones."""
    if current_user.role == "staff":
        return service.list_published()
    return service.list_all()


@router.get("/active", response_model=List[schemas.Campaign])
def list_active_campaigns(
    service: CampaignService = Depends(get_campaign_service),
    current_user=Depends(get_current_user),
):
    """Campaigns open for voting right now."""
    return service.list_votable()


@router.get("/{campaign_id}", response_model=schemas.Campaign)
def get_campaign(
    campaign_id: str,
    service: CampaignService = Depends(get_campaign_service),
    current_user: schemas.Principal = Depends(get_current_user),
):
    if current_user.role == "staff":
        return service.get_published(campaign_id)
    return service.get(campaign_id)


@router.post("/", response_model=schemas.Campaign, status_code=status.HTTP_201_CREATED)
def create_campaign(
    campaign_in: schemas.CampaignCreate,
    service: CampaignService = Depends(get_campaign_service),
    current_user=Depends(require_role("admin")),
):
    return service.create(
        title=campaign_in.title,
        description=campaign_in.description,
        start_date=campaign_in.start_date,
        end_date=campaign_in.end_date,
    )


@router.put("/{campaign_id}", response_model=schemas.Campaign)
def update_campaign(
    campaign_id: str,
    campaign_in: schemas.CampaignUpdate,
    service: CampaignService = Depends(get_campaign_service),
    current_user=Depends(require_role("admin")),
):
    return service.update(
        campaign_id,
        title=campaign_in.title,
        description=campaign_in.description,
        start_date=campaign_in.start_date,
        end_date=campaign_in.end_date,
        is_active=campaign_in.is_active,
    )


@router.post("/{campaign_id}/publish", response_model=schemas.Campaign)
def publish_campaign(
    campaign_id: str,
    publish_in: schemas.PublishRequest,
    service: CampaignService = Depends(get_campaign_service),
    current_user=Depends(require_role("admin")),
):
    return service.set_published(campaign_id, publish_in.is_published)


@router.delete("/{campaign_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_campaign(
    campaign_id: str,
    service: CampaignService = Depends(get_campaign_service),
    current_user=Depends(require_role("admin")),
):
    service.delete(campaign_id)
    return None


@router.get("/{campaign_id}/stats", response_model=schemas.CampaignStats)
def campaign_stats(
    campaign_id: str,
    service: CampaignService = Depends(get_campaign_service),
    current_user=Depends(require_role("admin")),
):
    return service.stats(campaign_id)


@router.get("/{campaign_id}/results", response_model=List[schemas.TallyRow])
def campaign_results(
    campaign_id: str,
    service: CampaignService = Depends(get_campaign_service),
    current_user=Depends(require_role("admin")),
):
    """Admin preview of the tally; not gated on the campaign having ended."""
    return service.results(campaign_id)
