"""
WonyaSoft Mobile Money client

Creates payment requests (the customer confirms on their phone) and looks up
the status of a transaction by our reference.
"""

import secrets
import string
from typing import Any, Dict, Optional

import httpx

from ampia.core.config import settings
from ampia.core.errors import PaymentProviderError
from ampia.services.logger import logger

TRANSACTION_REF_LENGTH = 20
TRANSACTION_REF_ALPHABET = string.ascii_uppercase + string.digits

# The provider is not consistent about the key or the wording of the status
STATUS_KEYS = (
    "StatutTransa",
    "statutTransa",
    "status",
    "Statut",
    "statut",
    "State",
    "state",
    "etat",
    "Etat",
)

SUCCESS_STATUSES = {
    "success",
    "succes",
    "succès",
    "completed",
    "paid",
    "valide",
    "validé",
    "approved",
    "confirme",
    "confirmé",
    "1",
    "true",
}

FAILURE_STATUSES = {
    "failed",
    "cancelled",
    "rejected",
    "annule",
    "annulé",
    "refuse",
    "refusé",
    "error",
    "echec",
    "échoué",
    "0",
    "false",
}


def extract_provider_status(data: Optional[Dict[str, Any]]) -> str:
    data = data or {}
    for key in STATUS_KEYS:
        value = data.get(key)
        if value not in (None, ""):
            return str(value).strip().lower()
    return ""


def map_provider_status(raw_status: Any) -> Optional[str]:
    """Map a provider status to "completed"/"failed", or None if still pending."""
    value = str(raw_status or "").strip().lower()
    if value in SUCCESS_STATUSES:
        return "completed"
    if value in FAILURE_STATUSES:
        return "failed"
    return None


class WonyaSoftService:
    """HTTP client for the WonyaSoft payment API"""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    @staticmethod
    def generate_transaction_ref() -> str:
        return "".join(
            secrets.choice(TRANSACTION_REF_ALPHABET)
            for _ in range(TRANSACTION_REF_LENGTH)
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=settings.WONYASOFT_API_URL,
            timeout=float(settings.WONYASOFT_TIMEOUT_SECONDS),
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {settings.WONYASOFT_TOKEN}",
                "Content-Type": "application/json",
            },
        )

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not settings.WONYASOFT_TOKEN:
            raise PaymentProviderError("WONYASOFT_TOKEN non configuré")

        try:
            async with self._client() as client:
                response = await client.post(path, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"WonyaSoft request to {path} failed: {e}")
            raise PaymentProviderError("Fournisseur de paiement injoignable") from e

        try:
            data = response.json()
        except ValueError:
            logger.error(f"WonyaSoft returned non-JSON body for {path}: {response.text}")
            raise PaymentProviderError("Réponse invalide de WonyaSoft")

        if response.is_error:
            logger.error(
                f"WonyaSoft HTTP {response.status_code} on {path}",
                {"response": data},
            )
            message = data.get("message") if isinstance(data, dict) else None
            raise PaymentProviderError(
                message or f"Erreur WonyaSoft: {response.status_code}"
            )

        return data if isinstance(data, dict) else {"data": data}

    async def create_payment(
        self,
        mobile_number: str,
        amount: float,
        currency: str,
        description: str,
        transaction_ref: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not settings.WONYASOFT_CALLBACK_URL:
            raise PaymentProviderError("WONYASOFT_CALLBACK_URL non configuré")

        ref = transaction_ref or self.generate_transaction_ref()
        payload = {
            "RefPartenaire": settings.WONYASOFT_REF_PARTENAIRE,
            "callbackUrl": settings.WONYASOFT_CALLBACK_URL,
            "MobileMoney": mobile_number,
            "Devise": currency,
            "Montant": str(amount),
            "Motif": description,
            "RefTransa": ref,
        }

        logger.info(f"WonyaSoft payment request {ref} ({amount} {currency})")
        data = await self._post("/cpayment", payload)

        return {
            "transactionRef": ref,
            "documentId": data.get("documentId"),
            "data": data,
        }

    async def get_transaction_status(self, transaction_ref: str) -> Dict[str, Any]:
        data = await self._post("/cpayment/detail", {"RefTransa": transaction_ref})
        return {"transactionRef": transaction_ref, "data": data}


# Global instance
wonyasoft_service = WonyaSoftService()
