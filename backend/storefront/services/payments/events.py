"""
Typed payment provider events.

Verified Stripe events are decoded once, at the webhook boundary, into one
of a closed set of event classes. Downstream code dispatches on the class
instead of probing raw payload dictionaries.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"


@dataclass(frozen=True)
class CheckoutSessionCompleted:
    """A checkout session finished; ``payment_status`` tells whether it is paid."""

    event_id: str
    session_id: str
    store_id: Optional[str]
    payment_status: str
    payment_intent_id: Optional[str] = None
    account: Optional[str] = None
    customer_email: Optional[str] = None
    currency: str = "usd"
    amount_subtotal: Optional[int] = None
    amount_total: Optional[int] = None
    total_details: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.payment_status in ("paid", "no_payment_required")


@dataclass(frozen=True)
class PaymentIntentSucceeded:
    """A payment intent was captured; the session is looked up separately."""

    event_id: str
    payment_intent_id: str
    store_id: Optional[str] = None
    account: Optional[str] = None


@dataclass(frozen=True)
class UnhandledEvent:
    """Any other event type; acknowledged and ignored."""

    event_id: str
    event_type: str
    account: Optional[str] = None


PaymentEvent = Union[CheckoutSessionCompleted, PaymentIntentSucceeded, UnhandledEvent]


def get_field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a provider payload dict or an SDK resource object."""
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        value = obj.get(name, default)
    else:
        value = getattr(obj, name, default)
    return default if value is None else value


def as_dict(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    to_dict = getattr(value, "to_dict", None)
    return dict(to_dict()) if callable(to_dict) else {}


def _intent_id(value: Any) -> Optional[str]:
    # ``payment_intent`` is an id string unless the payload was expanded.
    if value is None or isinstance(value, str):
        return value
    return get_field(value, "id")


def checkout_session_from_object(
    session: Any,
    event_id: str = "",
    account: Optional[str] = None,
) -> CheckoutSessionCompleted:
    """Build the typed view of a checkout session payload or SDK object."""
    metadata = as_dict(get_field(session, "metadata"))
    return CheckoutSessionCompleted(
        event_id=event_id,
        session_id=get_field(session, "id"),
        store_id=metadata.get("store_id"),
        payment_status=get_field(session, "payment_status", "unpaid"),
        payment_intent_id=_intent_id(get_field(session, "payment_intent")),
        account=account,
        customer_email=(
            get_field(session, "customer_email")
            or get_field(get_field(session, "customer_details"), "email")
        ),
        currency=get_field(session, "currency", "usd"),
        amount_subtotal=get_field(session, "amount_subtotal"),
        amount_total=get_field(session, "amount_total"),
        total_details=as_dict(get_field(session, "total_details")),
        metadata=metadata,
    )


def decode_event(event: Mapping[str, Any]) -> PaymentEvent:
    """
    Decode a verified provider event.

    Args:
        event: Verified Stripe event payload

    Returns:
        The matching typed event
    """
    event_id = event.get("id", "")
    event_type = event.get("type", "")
    account = event.get("account")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type in (CHECKOUT_SESSION_COMPLETED, CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED):
        return checkout_session_from_object(obj, event_id=event_id, account=account)

    if event_type == PAYMENT_INTENT_SUCCEEDED:
        return PaymentIntentSucceeded(
            event_id=event_id,
            payment_intent_id=obj["id"],
            store_id=(obj.get("metadata") or {}).get("store_id"),
            account=account,
        )

    return UnhandledEvent(event_id=event_id, event_type=event_type, account=account)
