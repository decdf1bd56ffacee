from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class OperationResult:
    """Outcome of one order state machine operation."""
    order_id: str
    success: bool
    status: Optional[str] = None
    helpship_order_id: Optional[str] = None
    code: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None
    skipped: bool = False

    @classmethod
    def ok(cls, order, message: Optional[str] = None, skipped: bool = False) -> "OperationResult":
        return cls(
            order_id=order.id,
            success=True,
            status=order.status.value,
            helpship_order_id=order.helpship_order_id,
            message=message,
            skipped=skipped,
        )

    @classmethod
    def failed(cls, order_id: str, code: str, error: str, order=None) -> "OperationResult":
        return cls(
            order_id=order_id,
            success=False,
            status=order.status.value if order is not None else None,
            helpship_order_id=order.helpship_order_id if order is not None else None,
            code=code,
            error=error,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "order_id": self.order_id,
            "status": self.status,
            "helpship_order_id": self.helpship_order_id,
        }
        if self.message:
            data["message"] = self.message
        if self.skipped:
            data["skipped"] = True
        if not self.success:
            data["error"] = self.error
            data["code"] = self.code
        return data
