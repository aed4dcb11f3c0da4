import enum


def _normalize(value: str) -> str:
    return value.strip().lower().replace("-", "_").replace(" ", "_")


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    APPROVED = "approved"
    COMPLETED = "completed"
    SUCCESS = "success"
    FAILED = "failed"
    DECLINED = "declined"
    REJECTED = "rejected"
    ERROR = "error"
    CANCELLED = "cancelled"
    CANCELED = "canceled"
    VOIDED = "voided"
    REFUNDED = "refunded"
    WAITING = "waiting"

    def is_paid(self) -> bool:
        return self in (
            PaymentStatus.PAID,
            PaymentStatus.APPROVED,
            PaymentStatus.COMPLETED,
            PaymentStatus.SUCCESS,
        )

    def is_pending(self) -> bool:
        return self in (
            PaymentStatus.PENDING,
            PaymentStatus.PROCESSING,
            PaymentStatus.WAITING,
        )

    def is_failed(self) -> bool:
        return self in (
            PaymentStatus.FAILED,
            PaymentStatus.DECLINED,
            PaymentStatus.REJECTED,
            PaymentStatus.ERROR,
        )

    def is_cancelled(self) -> bool:
        return self in (
            PaymentStatus.CANCELLED,
            PaymentStatus.CANCELED,
            PaymentStatus.VOIDED,
        )

    def is_refunded(self) -> bool:
        return self is PaymentStatus.REFUNDED

    @classmethod
    def from_string(cls, status: str) -> "PaymentStatus":
        try:
            return cls(_normalize(status))
        except ValueError:
            raise ValueError(f"Unknown payment status: {status}") from None


class PaymentMethod(str, enum.Enum):
    PIX = "pix"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BOLETO = "boleto"
    BANK_TRANSFER = "bank_transfer"
    WALLET = "wallet"
    CASH = "cash"
    PAYPAL = "paypal"
    APPLE_PAY = "apple_pay"
    GOOGLE_PAY = "google_pay"

    @classmethod
    def from_string(cls, method: str) -> "PaymentMethod":
        try:
            return cls(_normalize(method))
        except ValueError:
            raise ValueError(f"Unknown payment method: {method}") from None
