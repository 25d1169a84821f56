"""Клиент платежного шлюза Midtrans (Snap + Core API)."""
import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Protocol

import httpx

from storefront.config import settings
from storefront.core.exceptions import InvalidNotification, PaymentGatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapToken:
    """Ответ шлюза на создание транзакции."""

    token: str
    redirect_url: str


@dataclass(frozen=True)
class GatewayNotification:
    """Проверенное и разобранное уведомление шлюза."""

    gateway_order_id: str
    transaction_status: str
    fraud_status: str | None = None
    transaction_id: str | None = None
    payment_type: str | None = None
    status_code: str | None = None


class PaymentGateway(Protocol):
    """Интерфейс платежного шлюза, который нужен сервису платежей."""

    async def create_transaction(
        self,
        gateway_order_id: str,
        gross_amount: Decimal,
        customer: dict[str, str],
        items: list[dict[str, Any]],
        expiry_minutes: int,
    ) -> SnapToken:
        ...

    async def parse_notification(self, body: dict[str, Any]) -> GatewayNotification:
        ...

    async def get_transaction_status(self, gateway_order_id: str) -> str:
        ...


def _to_idr(amount: Decimal | float | int) -> int:
    """Midtrans принимает суммы в рупиях без дробной части."""
    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class MidtransService:
    """Сервис для работы с Midtrans Snap."""

    def __init__(
        self,
        server_key: str | None = None,
        snap_url: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.server_key = server_key if server_key is not None else settings.midtrans_server_key
        self.snap_url = snap_url or settings.midtrans_snap_url
        self.api_url = api_url or settings.midtrans_api_url
        self.timeout = timeout or settings.payment_gateway_timeout
        self._transport = transport
        if not self.server_key:
            logger.warning("Midtrans server key not configured")

    def _headers(self) -> dict[str, str]:
        # Basic Auth: server_key как логин, пустой пароль
        auth = base64.b64encode(f"{self.server_key}:".encode()).decode()
        return {
            "Authorization": f"Basic {auth}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Запрос к Midtrans с ограниченным таймаутом, без повторов."""
        try:
            async with self._client() as client:
                return await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"Midtrans API timeout: {method} {url}")
            raise PaymentGatewayError("таймаут запроса к Midtrans") from e
        except httpx.HTTPError as e:
            logger.error(f"Midtrans API request error: {e}")
            raise PaymentGatewayError(f"ошибка запроса к Midtrans: {e}") from e

    async def create_transaction(
        self,
        gateway_order_id: str,
        gross_amount: Decimal,
        customer: dict[str, str],
        items: list[dict[str, Any]],
        expiry_minutes: int,
    ) -> SnapToken:
        """
        Создать Snap-транзакцию.

        Args:
            gateway_order_id: уникальный order_id для Midtrans (новый на каждую попытку)
            gross_amount: сумма заказа
            customer: {"first_name", "phone", "email"?}
            items: [{"id", "price", "quantity", "name"}]
            expiry_minutes: время жизни транзакции

        Raises:
            PaymentGatewayError: шлюз недоступен или вернул ошибку
        """
        if not self.server_key:
            raise PaymentGatewayError("Midtrans server key not configured")

        customer_details = {
            "first_name": customer.get("first_name", ""),
            "last_name": customer.get("last_name", ""),
            "phone": customer.get("phone", ""),
        }
        if customer.get("email"):
            customer_details["email"] = customer["email"]

        payload = {
            "transaction_details": {
                "order_id": gateway_order_id,
                "gross_amount": _to_idr(gross_amount),
            },
            "customer_details": customer_details,
            "item_details": [
                {
                    "id": str(item["id"]),
                    "price": _to_idr(item["price"]),
                    "quantity": int(item["quantity"]),
                    "name": str(item["name"])[:50],  # Ограничение Midtrans
                }
                for item in items
            ],
            "credit_card": {"secure": True},
            "expiry": {"unit": "minutes", "duration": expiry_minutes},
        }

        logger.info(f"Creating Midtrans Snap transaction {gateway_order_id}: amount={payload['transaction_details']['gross_amount']}")
        response = await self._request("POST", f"{self.snap_url}/transactions", json=payload)

        if response.status_code not in (200, 201):
            logger.error(f"Midtrans Snap API error: {response.status_code} - {response.text}")
            raise PaymentGatewayError(
                f"Snap API вернул {response.status_code}",
                status_code=response.status_code,
                gateway_response=response.text,
            )

        data = response.json()
        token = data.get("token")
        redirect_url = data.get("redirect_url")
        if not token or not redirect_url:
            logger.error(f"Midtrans Snap response without token/redirect_url: {data}")
            raise PaymentGatewayError("в ответе Snap нет token/redirect_url", gateway_response=data)

        logger.info(f"Snap token created for {gateway_order_id}")
        return SnapToken(token=token, redirect_url=redirect_url)

    def signature_for(self, order_id: str, status_code: str, gross_amount: str) -> str:
        """Подпись уведомления: SHA512(order_id + status_code + gross_amount + server_key)."""
        raw = f"{order_id}{status_code}{gross_amount}{self.server_key}"
        return hashlib.sha512(raw.encode()).hexdigest()

    async def parse_notification(self, body: dict[str, Any]) -> GatewayNotification:
        """
        Проверить подпись уведомления и разобрать поля.

        Raises:
            InvalidNotification: нет обязательных полей или подпись не совпала
        """
        if not isinstance(body, dict):
            raise InvalidNotification("Уведомление должно быть JSON-объектом")

        order_id = body.get("order_id")
        status_code = body.get("status_code")
        gross_amount = body.get("gross_amount")
        signature = body.get("signature_key")
        transaction_status = body.get("transaction_status")

        if not all([order_id, status_code, gross_amount, signature, transaction_status]):
            raise InvalidNotification(f"В уведомлении не хватает полей: {sorted(body.keys())}")

        expected = self.signature_for(str(order_id), str(status_code), str(gross_amount))
        if not hmac.compare_digest(expected, str(signature)):
            raise InvalidNotification(f"Неверная подпись уведомления для {order_id}")

        return GatewayNotification(
            gateway_order_id=str(order_id),
            transaction_status=str(transaction_status),
            fraud_status=body.get("fraud_status"),
            transaction_id=body.get("transaction_id"),
            payment_type=body.get("payment_type"),
            status_code=str(status_code),
        )

    async def get_transaction_status(self, gateway_order_id: str) -> str:
        """
        Получить transaction_status из Core API (для опроса, не источник истины).

        Raises:
            PaymentGatewayError: шлюз недоступен или транзакция не найдена
        """
        response = await self._request("GET", f"{self.api_url}/{gateway_order_id}/status")
        if response.status_code != 200:
            raise PaymentGatewayError(
                f"Core API вернул {response.status_code}",
                status_code=response.status_code,
                gateway_response=response.text,
            )

        data = response.json()
        # Core API возвращает HTTP 200 и код ошибки в теле
        if str(data.get("status_code", "200")) not in ("200", "201", "202", "407"):
            raise PaymentGatewayError(
                data.get("status_message", "транзакция не найдена"),
                status_code=int(data.get("status_code", 0) or 0),
                gateway_response=data,
            )
        return data.get("transaction_status", "")
