from sqlalchemy.orm import Session

from app.models.order import Order
from app.models.order_status_history import OrderStatusHistory
from app.schemas.order_tracking import OrderTrackingResponse, OrderStatusHistoryResponse
from app.services import order_service
from app.services.payment_service import TERMINAL_STATUSES, next_statuses


class OrderTrackingService:

    @staticmethod
    def _build_tracking(db: Session, order: Order) -> OrderTrackingResponse:
        history = (
            db.query(OrderStatusHistory)
            .filter(OrderStatusHistory.order_id == order.id)
            .order_by(OrderStatusHistory.created_at, OrderStatusHistory.id)
            .all()
        )

        return OrderTrackingResponse(
            order_id=order.id,
            current_status=order.status.value,
            is_terminal=order.status in TERMINAL_STATUSES,
            next_statuses=next_statuses(order.status),
            status_history=[OrderStatusHistoryResponse.model_validate(h) for h in history],
        )

    @staticmethod
    def get_order_tracking(db: Session, owner_id: str, order_id: int) -> OrderTrackingResponse:
        """Get tracking information for an order placed by an authenticated owner."""
        order = order_service.get_order_for_owner(db, owner_id, order_id)
        return OrderTrackingService._build_tracking(db, order)

    @staticmethod
    def get_tracking_by_access_code(db: Session, access_code: str) -> OrderTrackingResponse:
        """Get tracking information for a guest order."""
        order = order_service.get_order_by_access_code(db, access_code)
        return OrderTrackingService._build_tracking(db, order)
