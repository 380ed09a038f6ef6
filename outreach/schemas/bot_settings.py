from pydantic import BaseModel, Field, model_validator


class BotSettingsOut(BaseModel):
    provider: str
    updates_enabled: bool
    whatsapp_phone_id: str | None = None
    has_whatsapp_token: bool
    has_telegram_bot_token: bool
    sms_account_sid: str | None = None
    sms_from_number: str | None = None
    has_sms_auth_token: bool


class BotSettingsUpdateIn(BaseModel):
    provider: str | None = None
    updates_enabled: bool | None = None
    whatsapp_phone_id: str | None = Field(default=None, max_length=60)
    whatsapp_token: str | None = Field(default=None, max_length=500)
    telegram_bot_token: str | None = Field(default=None, max_length=120)
    sms_account_sid: str | None = Field(default=None, max_length=60)
    sms_auth_token: str | None = Field(default=None, max_length=120)
    sms_from_number: str | None = Field(default=None, max_length=40)

    @model_validator(mode="after")
    def validate_has_field(self) -> "BotSettingsUpdateIn":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self
