from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from outreach.core.id_utils import generate_reference


@dataclass(frozen=True)
class PaymentInitRequest:
    business_id: str
    payment_id: str
    amount: Decimal
    currency: str
    description: str
    success_redirect_url: str | None
    cancel_redirect_url: str | None


@dataclass(frozen=True)
class PaymentInitResult:
    provider: str
    payment_reference: str
    checkout_url: str | None = None


class PaymentProvider(Protocol):
    name: str

    def initialize_checkout(self, request: PaymentInitRequest) -> PaymentInitResult:
        ...


class StubPaymentProvider:
    name = "stub"

    def initialize_checkout(self, request: PaymentInitRequest) -> PaymentInitResult:
        reference = generate_reference("stub")
        checkout_url = request.success_redirect_url
        if checkout_url:
            separator = "&" if "?" in checkout_url else "?"
            checkout_url = f"{checkout_url}{separator}reference={reference}"
        return PaymentInitResult(
            provider=self.name,
            payment_reference=reference,
            checkout_url=checkout_url,
        )


_PAYMENT_PROVIDERS: dict[str, PaymentProvider] = {
    "stub": StubPaymentProvider(),
}


def get_payment_provider(name: str) -> PaymentProvider:
    normalized = (name or "").strip().lower()
    provider = _PAYMENT_PROVIDERS.get(normalized)
    if not provider:
        available = ", ".join(sorted(_PAYMENT_PROVIDERS.keys()))
        raise ValueError(f"Unknown payment provider '{name}'. Available: {available}")
    return provider
