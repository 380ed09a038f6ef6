from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from outreach.core.api_docs import error_responses
from outreach.core.deps import get_db
from outreach.core.security_current import TenantAccess, get_current_tenant
from outreach.models.bot_settings import BotSettings
from outreach.schemas.bot_settings import BotSettingsOut, BotSettingsUpdateIn
from outreach.services.bot_settings_service import default_channel, get_bot_settings, update_bot_settings

router = APIRouter(prefix="/bot-settings", tags=["bot-settings"])


def _bot_settings_out(row: BotSettings | None) -> BotSettingsOut:
    if row is None:
        return BotSettingsOut(
            provider=default_channel(None).value,
            updates_enabled=True,
            has_whatsapp_token=False,
            has_telegram_bot_token=False,
            has_sms_auth_token=False,
        )
    return BotSettingsOut(
        provider=row.provider,
        updates_enabled=row.updates_enabled,
        whatsapp_phone_id=row.whatsapp_phone_id,
        has_whatsapp_token=bool(row.whatsapp_token),
        has_telegram_bot_token=bool(row.telegram_bot_token),
        sms_account_sid=row.sms_account_sid,
        sms_from_number=row.sms_from_number,
        has_sms_auth_token=bool(row.sms_auth_token),
    )


@router.get(
    "",
    response_model=BotSettingsOut,
    summary="Get bot configuration",
    responses=error_responses(401, 500),
)
def read_bot_settings(
    db: Session = Depends(get_db),
    access: TenantAccess = Depends(get_current_tenant),
):
    return _bot_settings_out(get_bot_settings(db, business_id=access.business.id))


@router.put(
    "",
    response_model=BotSettingsOut,
    summary="Update bot configuration",
    responses=error_responses(400, 401, 403, 422, 500),
)
def write_bot_settings(
    payload: BotSettingsUpdateIn,
    db: Session = Depends(get_db),
    access: TenantAccess = Depends(get_current_tenant),
):
    row = update_bot_settings(
        db,
        business=access.business,
        actor=access.actor,
        changes=payload.model_dump(exclude_unset=True),
    )
    db.commit()
    db.refresh(row)
    return _bot_settings_out(row)
