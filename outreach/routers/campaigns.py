from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from outreach.core.api_docs import error_responses
from outreach.core.deps import get_db
from outreach.core.security_current import TenantAccess, get_current_tenant
from outreach.models.campaign import Campaign
from outreach.schemas.campaign import (
    CampaignCreateIn,
    CampaignDeleteOut,
    CampaignDispatchOut,
    CampaignOut,
    CampaignUpdateIn,
    MessageLogOut,
    SegmentCountsOut,
    SegmentCustomerOut,
)
from outreach.services import campaign_store, segmenter
from outreach.services.dispatch_engine import dispatch_campaign

router = APIRouter(prefix="/campaigns", tags=["campaigns"])


def _campaign_out(campaign: Campaign) -> CampaignOut:
    return CampaignOut(
        id=campaign.id,
        name=campaign.name,
        message=campaign.message_template,
        target_category=campaign.target_segment,
        channel=campaign.channel,
        status=campaign.status,
        recipients_count=campaign.recipients_count,
        sent_count=campaign.sent_count,
        failed_count=campaign.failed_count,
        created_at=campaign.created_at,
        updated_at=campaign.updated_at,
        sent_at=campaign.sent_at,
    )


@router.get(
    "/segments",
    response_model=SegmentCountsOut,
    summary="Count customers per segment",
    responses=error_responses(401, 500),
)
def segment_counts(
    db: Session = Depends(get_db),
    access: TenantAccess = Depends(get_current_tenant),
):
    return SegmentCountsOut(**segmenter.count_by_segment(db, business_id=access.business.id))


@router.get(
    "/segments/{segment}/customers",
    response_model=list[SegmentCustomerOut],
    summary="Preview segment customers",
    responses=error_responses(400, 401, 422, 500),
)
def segment_customers(
    segment: str,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    access: TenantAccess = Depends(get_current_tenant),
):
    recipients = segmenter.resolve(db, business_id=access.business.id, segment=segment, limit=limit)
    return [SegmentCustomerOut(contact=row.contact, name=row.name) for row in recipients]


@router.get(
    "",
    response_model=list[CampaignOut],
    summary="List campaigns",
    responses=error_responses(401, 500),
)
def list_campaigns(
    db: Session = Depends(get_db),
    access: TenantAccess = Depends(get_current_tenant),
):
    rows = campaign_store.list_campaigns(db, business_id=access.business.id)
    return [_campaign_out(row) for row in rows]


@router.post(
    "",
    response_model=CampaignOut,
    summary="Create draft campaign",
    responses=error_responses(400, 401, 422, 500),
)
def create_campaign(
    payload: CampaignCreateIn,
    db: Session = Depends(get_db),
    access: TenantAccess = Depends(get_current_tenant),
):
    campaign = campaign_store.create_campaign(
        db,
        business_id=access.business.id,
        actor=access.actor,
        name=payload.name,
        message=payload.message,
        segment=payload.target_category,
        channel=payload.channel,
    )
    db.commit()
    db.refresh(campaign)
    return _campaign_out(campaign)


@router.patch(
    "/{campaign_id}",
    response_model=CampaignOut,
    summary="Edit draft campaign",
    responses=error_responses(400, 401, 404, 409, 422, 500),
)
def update_campaign(
    campaign_id: str,
    payload: CampaignUpdateIn,
    db: Session = Depends(get_db),
    access: TenantAccess = Depends(get_current_tenant),
):
    campaign = campaign_store.get_campaign(db, business_id=access.business.id, campaign_id=campaign_id)
    campaign_store.update_campaign(
        db,
        campaign,
        actor=access.actor,
        name=payload.name,
        message=payload.message,
        segment=payload.target_category,
        channel=payload.channel,
    )
    db.commit()
    db.refresh(campaign)
    return _campaign_out(campaign)


@router.post(
    "/{campaign_id}/send",
    response_model=CampaignDispatchOut,
    summary="Send campaign to its segment",
    responses=error_responses(400, 401, 403, 404, 409, 500),
)
def send_campaign(
    campaign_id: str,
    db: Session = Depends(get_db),
    access: TenantAccess = Depends(get_current_tenant),
):
    summary = dispatch_campaign(
        db,
        business=access.business,
        campaign_id=campaign_id,
        actor=access.actor,
    )
    return CampaignDispatchOut(sent=summary.sent, failed=summary.failed)


@router.delete(
    "/{campaign_id}",
    response_model=CampaignDeleteOut,
    summary="Delete campaign",
    responses=error_responses(401, 404, 409, 500),
)
def delete_campaign(
    campaign_id: str,
    db: Session = Depends(get_db),
    access: TenantAccess = Depends(get_current_tenant),
):
    campaign = campaign_store.get_campaign(db, business_id=access.business.id, campaign_id=campaign_id)
    campaign_store.delete_campaign(db, campaign, actor=access.actor)
    db.commit()
    return CampaignDeleteOut(ok=True)


@router.get(
    "/{campaign_id}/logs",
    response_model=list[MessageLogOut],
    summary="List campaign delivery logs",
    responses=error_responses(401, 404, 500),
)
def campaign_logs(
    campaign_id: str,
    db: Session = Depends(get_db),
    access: TenantAccess = Depends(get_current_tenant),
):
    campaign = campaign_store.get_campaign(db, business_id=access.business.id, campaign_id=campaign_id)
    return [MessageLogOut.model_validate(row) for row in campaign_store.list_message_logs(db, campaign=campaign)]
