"""
VNPay payment gateway client.

Builds signed redirect URLs for the VNPay hosted payment page. No network
I/O happens here: the buyer's browser follows the URL.
"""

import re
import unicodedata
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from functools import lru_cache
from typing import Dict, Optional

from coursepay.app.core.config import settings
from coursepay.app.core.exceptions import ConfigurationError
from coursepay.app.domain.payments import signature

VNP_DATE_FORMAT = "%Y%m%d%H%M%S"
ORDER_INFO_MAX_LENGTH = 255


@dataclass(frozen=True)
class PaymentRequest:
    """One payment attempt handed to the gateway."""
    amount: Decimal
    txn_ref: str
    ip_addr: str
    order_description: Optional[str] = None
    bank_code: Optional[str] = None


def to_unsigned_text(text: str) -> str:
    """
    Fold Vietnamese text to plain ASCII for vnp_OrderInfo.

    VNPay rejects diacritics and special characters in the order description,
    so accents are stripped, 'đ' becomes 'd' and anything that is not a
    letter, digit or space collapses to a single space.
    """
    text = text.replace("đ", "d").replace("Đ", "D")
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    ascii_only = stripped.encode("ascii", "ignore").decode("ascii")
    cleaned = re.sub(r"[^A-Za-z0-9 ]", " ", ascii_only)
    return re.sub(r"\s+", " ", cleaned).strip()


def to_gateway_amount(amount: Decimal) -> int:
    """VNPay amounts are integers in hundredths of a dong."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class VNPayClient:
    """Signed payment URL builder for one merchant terminal."""

    def __init__(
        self,
        *,
        tmn_code: str,
        hash_secret: str,
        payment_url: str,
        return_url: str,
        version: str = "2.1.0",
        locale: str = "vn",
        order_type: str = "other",
        expire_minutes: int = 15,
    ) -> None:
        self.tmn_code = tmn_code
        self.hash_secret = hash_secret
        self.payment_url = payment_url
        self.return_url = return_url
        self.version = version
        self.locale = locale
        self.order_type = order_type
        self.expire_minutes = expire_minutes

    @classmethod
    def from_settings(cls) -> "VNPayClient":
        """
        Build the client from application settings.

        Raises:
            ConfigurationError: if merchant code, hash secret, gateway URL or return URL is missing
        """
        required = {
            "VNPAY_TMN_CODE": settings.vnpay_tmn_code,
            "VNPAY_HASH_SECRET": settings.vnpay_hash_secret,
            "VNPAY_URL": settings.vnpay_url,
            "VNPAY_RETURN_URL": settings.vnpay_return_url,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ConfigurationError(missing)

        return cls(
            tmn_code=settings.vnpay_tmn_code,
            hash_secret=settings.vnpay_hash_secret,
            payment_url=settings.vnpay_url,
            return_url=settings.vnpay_return_url,
            version=settings.vnpay_version,
            locale=settings.vnpay_locale,
            order_type=settings.vnpay_order_type,
            expire_minutes=settings.vnpay_expire_minutes,
        )

    def build_params(self, request: PaymentRequest, now: Optional[datetime] = None) -> Dict[str, str]:
        """
        Assemble the unsigned vnp_* parameter set.

        Dates use local server time; VNPay interprets them as GMT+7.
        """
        created = now or datetime.now()
        expires = created + timedelta(minutes=self.expire_minutes)

        description = request.order_description or f"Thanh toan don hang {request.txn_ref}"
        order_info = to_unsigned_text(description)[:ORDER_INFO_MAX_LENGTH]

        params = {
            "vnp_Version": self.version,
            "vnp_Command": "pay",
            "vnp_TmnCode": self.tmn_code,
            "vnp_Locale": self.locale,
            "vnp_CurrCode": "VND",
            "vnp_TxnRef": request.txn_ref,
            "vnp_OrderInfo": order_info,
            "vnp_OrderType": self.order_type,
            "vnp_Amount": str(to_gateway_amount(request.amount)),
            "vnp_ReturnUrl": self.return_url,
            "vnp_IpAddr": request.ip_addr,
            "vnp_CreateDate": created.strftime(VNP_DATE_FORMAT),
            "vnp_ExpireDate": expires.strftime(VNP_DATE_FORMAT),
        }
        if request.bank_code:
            params["vnp_BankCode"] = request.bank_code
        return params

    def create_payment_url(self, request: PaymentRequest, now: Optional[datetime] = None) -> str:
        """
        Return the signed redirect URL for a payment request.

        Args:
            request: Amount, our transaction reference and the buyer's IP
            now: Creation timestamp override

        Returns:
            `<gateway>?<canonical query>&vnp_SecureHash=<hex>`
        """
        params = self.build_params(request, now)
        query = signature.canonicalize(params)
        secure_hash = signature.sign(params, self.hash_secret)
        return f"{self.payment_url}?{query}&vnp_SecureHash={secure_hash}"


@lru_cache()
def get_vnpay_client() -> VNPayClient:
    """
    FastAPI dependency returning the process-wide client.

    Called once during application startup so misconfiguration fails fast.
    """
    return VNPayClient.from_settings()
