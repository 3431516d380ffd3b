"""
Payment Service

Mobile money ticket purchases. A payment moves
pending -> processing -> completed | failed; the ticket is created the first
time a payment is seen completed, whether that comes from a status refresh or
from the provider webhook.
"""

import asyncio
import re
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ampia.core.config import settings
from ampia.core.database import DuplicateRowError, get_store
from ampia.core.errors import Forbidden, InvalidRequest, NotFound, PaymentProviderError
from ampia.services.logger import logger
from ampia.services.wonyasoft_service import (
    extract_provider_status,
    map_provider_status,
    wonyasoft_service,
)

MOBILE_NUMBER_PATTERN = re.compile(r"^0[0-9]{9}$")
TERMINAL_STATUSES = ("completed", "failed")
DEFAULT_CURRENCY = "CDF"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_valid_mobile_number(mobile_number: Any) -> bool:
    return isinstance(mobile_number, str) and bool(
        MOBILE_NUMBER_PATTERN.match(mobile_number)
    )


def normalize_currency(currency: Any) -> str:
    if isinstance(currency, str) and currency.upper() in settings.payment_currencies_list:
        return currency.upper()
    return DEFAULT_CURRENCY


def status_payload(payment: Dict[str, Any], status: Optional[str] = None) -> Dict[str, Any]:
    return {
        "transactionRef": payment.get("transaction_ref"),
        "status": status or payment.get("status"),
        "amount": payment.get("amount"),
        "currency": payment.get("currency"),
        "ticketId": payment.get("ticket_id"),
    }


class PaymentService:
    """Service for mobile money ticket payments"""

    async def initiate_payment(
        self,
        user_id: Any,
        ticket_type_id: Any,
        quantity: Any,
        mobile_number: Any,
        currency: Any = None,
    ) -> Dict[str, Any]:
        try:
            ticket_type_id = int(ticket_type_id)
        except (TypeError, ValueError):
            ticket_type_id = 0
        if ticket_type_id <= 0:
            raise InvalidRequest("ID type de ticket invalide")

        try:
            quantity = int(quantity) if quantity is not None else 1
        except (TypeError, ValueError):
            quantity = 1
        if quantity < 1 or quantity > int(settings.PAYMENT_MAX_QUANTITY):
            raise InvalidRequest(
                f"La quantité doit être entre 1 et {settings.PAYMENT_MAX_QUANTITY}"
            )

        if not is_valid_mobile_number(mobile_number):
            raise InvalidRequest("Numéro Mobile Money invalide (format: 0XXXXXXXXX)")

        currency = normalize_currency(currency)
        store = get_store()

        ticket_types = await asyncio.to_thread(
            store.select, "TicketTypes", {"id": ticket_type_id}
        )
        ticket_type = ticket_types[0] if ticket_types else None
        if not ticket_type:
            raise NotFound("Type de ticket non trouvé")

        if int(ticket_type.get("available_quantity") or 0) < quantity:
            raise InvalidRequest("Places insuffisantes")

        events = await asyncio.to_thread(
            store.select, "Events", {"id": ticket_type.get("event_id")}
        )
        event = events[0] if events else None
        if not event:
            raise NotFound("Événement non trouvé")

        total_amount = ticket_type.get("price", 0) * quantity
        transaction_ref = wonyasoft_service.generate_transaction_ref()

        payment = await asyncio.to_thread(
            store.insert,
            "Payments",
            {
                "user_id": user_id,
                "event_id": ticket_type.get("event_id"),
                "ticket_type_id": ticket_type_id,
                "quantity": quantity,
                "amount": total_amount,
                "currency": currency,
                "mobile_number": mobile_number,
                "transaction_ref": transaction_ref,
                "status": "pending",
                "provider": "wonyasoft",
                "created_at": _now(),
            },
        )

        description = f"Ticket {ticket_type.get('name')} x{quantity} - {event.get('title')}"
        try:
            provider_result = await wonyasoft_service.create_payment(
                mobile_number=mobile_number,
                amount=total_amount,
                currency=currency,
                description=description,
                transaction_ref=transaction_ref,
            )
        except PaymentProviderError:
            await asyncio.to_thread(
                store.update, "Payments", {"status": "failed"}, {"id": payment["id"]}
            )
            raise

        await asyncio.to_thread(
            store.update,
            "Payments",
            {
                "provider_transaction_id": provider_result.get("documentId"),
                "status": "processing",
            },
            {"id": payment["id"]},
        )

        logger.info(
            f"Payment {transaction_ref} initiated by user {user_id}",
            {"amount": total_amount, "currency": currency},
        )

        return {
            "message": "Paiement initié avec succès",
            "payment": {
                "id": payment["id"],
                "transactionRef": transaction_ref,
                "amount": total_amount,
                "currency": currency,
                "status": "processing",
                "ticketType": ticket_type.get("name"),
                "event": event.get("title"),
                "quantity": quantity,
            },
        }

    async def _get_payment(self, transaction_ref: str) -> Dict[str, Any]:
        store = get_store()
        payments = await asyncio.to_thread(
            store.select, "Payments", {"transaction_ref": transaction_ref}
        )
        if not payments:
            raise NotFound("Paiement non trouvé")
        return payments[0]

    async def issue_ticket(self, payment: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create the payment's ticket, or return it if it was already issued.

        Places are reserved atomically before the ticket row is written; the
        unique Tickets.payment_id makes a concurrent second issue fail, and that
        caller gives its reservation back and reuses the existing ticket.
        """
        store = get_store()

        ticket_types = await asyncio.to_thread(
            store.select, "TicketTypes", {"id": payment.get("ticket_type_id")}
        )
        ticket_type = ticket_types[0] if ticket_types else None
        if not ticket_type:
            raise NotFound("Type de ticket non trouvé")

        quantity = int(payment.get("quantity") or 1)
        remaining = await asyncio.to_thread(
            store.rpc,
            "reserve_places",
            {"p_ticket_type_id": str(ticket_type["id"]), "p_quantity": quantity},
        )
        if remaining is None:
            raise InvalidRequest("Places insuffisantes")

        async def release_places():
            await asyncio.to_thread(
                store.increment,
                "TicketTypes",
                "available_quantity",
                ticket_type["id"],
                quantity,
            )

        try:
            ticket = await asyncio.to_thread(
                store.insert,
                "Tickets",
                {
                    "user_id": payment.get("user_id"),
                    "event_id": payment.get("event_id"),
                    "ticket_type_id": payment.get("ticket_type_id"),
                    "status": "active",
                    "purchase_date": _now(),
                    "price_paid": payment.get("amount"),
                    "payment_id": payment.get("id"),
                    "quantity": quantity,
                    "qr_code": f"AMPIA-{secrets.token_hex(8).upper()}",
                },
            )
        except DuplicateRowError:
            await release_places()
            existing = await asyncio.to_thread(
                store.select, "Tickets", {"payment_id": payment.get("id")}
            )
            logger.info(f"Ticket for payment {payment.get('id')} already issued")
            return existing[0]
        except Exception:
            await release_places()
            raise

        logger.info(
            f"Ticket {ticket['id']} created for payment {payment.get('id')}",
            {"remaining_places": remaining},
        )
        return ticket

    async def _transition(
        self, payment: Dict[str, Any], new_status: str, extra: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Persist a status change. A completion is only saved together with its
        ticket, so a payment is never left completed without one.
        """
        store = get_store()
        patch = {"status": new_status, **(extra or {})}

        if new_status == "completed" and not payment.get("ticket_id"):
            ticket = await self.issue_ticket(payment)
            patch["ticket_id"] = ticket["id"]

        if any(payment.get(key) != value for key, value in patch.items()):
            await asyncio.to_thread(store.update, "Payments", patch, {"id": payment["id"]})

        return {**payment, **patch}

    async def get_payment_status(self, user_id: Any, transaction_ref: str) -> Dict[str, Any]:
        payment = await self._get_payment(transaction_ref)

        if str(payment.get("user_id")) != str(user_id):
            raise Forbidden("Accès interdit")

        if payment.get("status") == "completed" and not payment.get("ticket_id"):
            payment = await self._transition(payment, "completed")
            return status_payload(payment)

        if payment.get("status") in TERMINAL_STATUSES:
            return status_payload(payment)

        try:
            provider_result = await wonyasoft_service.get_transaction_status(transaction_ref)
        except PaymentProviderError as e:
            logger.warning(f"WonyaSoft status check failed for {transaction_ref}: {e}")
            return status_payload(payment)

        raw_status = extract_provider_status(provider_result.get("data"))
        new_status = map_provider_status(raw_status) or payment.get("status")

        if new_status != payment.get("status"):
            logger.info(
                f"Payment {transaction_ref}: {payment.get('status')} -> {new_status}",
                {"provider_status": raw_status},
            )
            payment = await self._transition(payment, new_status)

        return {**status_payload(payment), "providerStatus": raw_status or None}

    async def handle_webhook(self, body: Dict[str, Any]) -> Dict[str, Any]:
        transaction_ref = body.get("RefTransa")
        if not transaction_ref:
            raise InvalidRequest("RefTransa manquant")

        payment = await self._get_payment(transaction_ref)

        new_status = payment.get("status")
        # A late or replayed webhook never reopens a settled payment
        if new_status not in TERMINAL_STATUSES:
            new_status = map_provider_status(body.get("status")) or new_status

        logger.info(f"Webhook: {transaction_ref} - {payment.get('status')} -> {new_status}")

        await self._transition(
            payment,
            new_status,
            {
                "provider_transaction_id": body.get("documentId")
                or payment.get("provider_transaction_id"),
                "webhook_received_at": _now(),
            },
        )

        return {"message": "Webhook traité", "status": new_status}

    async def get_payment_history(self, user_id: Any) -> List[Dict[str, Any]]:
        store = get_store()
        payments = await asyncio.to_thread(
            store.select, "Payments", {"user_id": user_id}, order="created_at.desc"
        )

        async def first_by_id(table: str, row_id: Any) -> Optional[Dict[str, Any]]:
            if row_id is None:
                return None
            rows = await asyncio.to_thread(store.select, table, {"id": row_id})
            return rows[0] if rows else None

        async def with_details(payment: Dict[str, Any]) -> Dict[str, Any]:
            event, ticket_type = await asyncio.gather(
                first_by_id("Events", payment.get("event_id")),
                first_by_id("TicketTypes", payment.get("ticket_type_id")),
            )
            return {**payment, "event": event, "ticketType": ticket_type}

        return list(await asyncio.gather(*(with_details(p) for p in payments)))


# Global instance
payment_service = PaymentService()
