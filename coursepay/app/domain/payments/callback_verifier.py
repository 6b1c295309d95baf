"""
VNPay callback verification.

Turns the raw query string of a return or IPN request into a typed payload,
after checking the HMAC signature.
"""

import enum
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, Mapping, Optional, Tuple

from coursepay.app.domain.payments import signature

logger = logging.getLogger(__name__)

SUCCESS_CODE = "00"

RESPONSE_MESSAGES = {
    "00": "Giao dịch thành công",
    "07": "Trừ tiền thành công. Giao dịch bị nghi ngờ.",
    "09": "Thẻ/Tài khoản chưa đăng ký dịch vụ InternetBanking",
    "10": "Xác thực thông tin thẻ/tài khoản không đúng quá 3 lần",
    "11": "Đã hết hạn chờ thanh toán.",
    "12": "Thẻ/Tài khoản bị khóa.",
    "13": "Nhập sai mật khẩu xác thực giao dịch (OTP).",
    "24": "Giao dịch không thành công do: Khách hàng hủy giao dịch",
    "51": "Tài khoản không đủ số dư để thực hiện giao dịch.",
    "65": "Tài khoản đã vượt quá hạn mức giao dịch trong ngày.",
    "75": "Ngân hàng thanh toán đang bảo trì.",
    "79": "Nhập sai mật khẩu thanh toán quá số lần quy định.",
    "99": "Lỗi không xác định.",
}


class CallbackOutcome(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class CallbackPayload:
    """Verified gateway callback data."""
    txn_ref: str
    amount: Decimal
    response_code: str
    gateway_transaction_no: Optional[str]
    bank_code: Optional[str]
    pay_date: Optional[str]
    order_info: Optional[str]

    @property
    def outcome(self) -> CallbackOutcome:
        if self.response_code == SUCCESS_CODE:
            return CallbackOutcome.SUCCESS
        return CallbackOutcome.FAILED

    @property
    def message(self) -> str:
        return response_message(self.response_code)


@dataclass(frozen=True)
class CallbackVerification:
    valid: bool
    payload: Optional[CallbackPayload] = None


def response_message(code: Optional[str]) -> str:
    """Human-readable message for a VNPay response code. Never raises."""
    if code in RESPONSE_MESSAGES:
        return RESPONSE_MESSAGES[code]
    return f"Mã lỗi: {code}"


def normalize_query(items: Iterable[Tuple[str, str]]) -> Dict[str, str]:
    """
    Flatten multi-valued query items into a plain mapping.

    The first value wins for repeated keys; values are coerced to str.
    """
    params: Dict[str, str] = {}
    for key, value in items:
        if key not in params:
            params[key] = "" if value is None else str(value)
    return params


def _parse_amount(raw: Optional[str]) -> Optional[Decimal]:
    try:
        return (Decimal(raw) / 100).quantize(Decimal("0.01"))
    except (InvalidOperation, TypeError):
        return None


def verify_callback(params: Mapping[str, str], secret: str) -> CallbackVerification:
    """
    Verify a callback's signature and extract its payload.

    Args:
        params: Normalized query parameters including vnp_SecureHash
        secret: Merchant hash secret

    Returns:
        CallbackVerification; `valid` is False on a bad signature or a
        payload missing the transaction reference or amount
    """
    secure_hash = params.get("vnp_SecureHash", "")
    if not signature.verify(params, secure_hash, secret):
        logger.warning(
            "VNPay callback signature mismatch",
            extra={"txn_ref": params.get("vnp_TxnRef")},
        )
        return CallbackVerification(valid=False)

    txn_ref = params.get("vnp_TxnRef")
    amount = _parse_amount(params.get("vnp_Amount"))
    if not txn_ref or amount is None:
        logger.warning("VNPay callback missing vnp_TxnRef or vnp_Amount")
        return CallbackVerification(valid=False)

    payload = CallbackPayload(
        txn_ref=txn_ref,
        amount=amount,
        response_code=params.get("vnp_ResponseCode", ""),
        gateway_transaction_no=params.get("vnp_TransactionNo") or None,
        bank_code=params.get("vnp_BankCode") or None,
        pay_date=params.get("vnp_PayDate") or None,
        order_info=params.get("vnp_OrderInfo") or None,
    )
    return CallbackVerification(valid=True, payload=payload)
