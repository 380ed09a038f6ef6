from outreach.models.business import Business
from outreach.models.customer import Customer
from outreach.models.order import Order
from outreach.models.campaign import Campaign, MessageLog
from outreach.models.billing import Payment, Subscription, Voucher
from outreach.models.bot_settings import BotSettings, CustomerMessagingId
from outreach.models.audit_log import AuditLog
