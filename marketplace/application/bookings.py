from typing import List, Optional

from sqlalchemy import select

from marketplace.domain.exceptions import NotFound
from marketplace.domain.models import Order, ServiceCategory, ServiceRequest
from marketplace.domain.pricing import parse_timestamp
from marketplace.domain.status import BookingStatus
from .base import BaseService
from .schemas import ServiceRequestCreate


class BookingService(BaseService):
    """Open-market service requests and read access to placed orders."""

    def create_service_request(self, client_id: int, data: ServiceRequestCreate) -> ServiceRequest:
        with self.unit_of_work():
            if not self.db.get(ServiceCategory, data.category_id):
                raise NotFound(f"Category {data.category_id} not found")
            request = ServiceRequest(
                client_id=client_id,
                provider_id=None,
                status=BookingStatus.PENDING.value,
                **data.model_dump(exclude={"scheduled_at"}),
            )
            if data.scheduled_at is not None:
                request.scheduled_at = parse_timestamp(data.scheduled_at, "scheduled_at")
            self.db.add(request)
            self.db.flush()
        self.logger.info(
            f"Service request {request.id} posted by client {client_id}",
            extra={'extra_fields': {'service_request_id': request.id, 'category_id': data.category_id}},
        )
        return request

    def get_service_request(self, request_id: int) -> ServiceRequest:
        request = self.db.get(ServiceRequest, request_id)
        if not request:
            raise NotFound(f"Service request {request_id} not found")
        return request

    def list_service_requests_for_client(self, client_id: int) -> List[ServiceRequest]:
        return list(self.db.scalars(
            select(ServiceRequest)
            .where(ServiceRequest.client_id == client_id)
            .order_by(ServiceRequest.created_at.desc(), ServiceRequest.id.desc())
        ))

    def list_service_requests_for_provider(self, provider_id: int) -> List[ServiceRequest]:
        return list(self.db.scalars(
            select(ServiceRequest)
            .where(ServiceRequest.provider_id == provider_id)
            .order_by(ServiceRequest.created_at.desc(), ServiceRequest.id.desc())
        ))

    def list_open_service_requests(self, category_id: Optional[int] = None) -> List[ServiceRequest]:
        """Pending requests nobody has claimed yet."""
        query = select(ServiceRequest).where(
            ServiceRequest.status == BookingStatus.PENDING.value,
            ServiceRequest.provider_id.is_(None),
        )
        if category_id is not None:
            query = query.where(ServiceRequest.category_id == category_id)
        return list(self.db.scalars(query.order_by(ServiceRequest.created_at.asc(), ServiceRequest.id.asc())))

    def get_order(self, order_id: int) -> Order:
        order = self.db.get(Order, order_id)
        if not order or order.status == BookingStatus.CART.value:
            raise NotFound(f"Order {order_id} not found")
        return order

    def list_orders_for_client(self, client_id: int) -> List[Order]:
        return list(self.db.scalars(
            select(Order)
            .where(Order.client_id == client_id, Order.status != BookingStatus.CART.value)
            .order_by(Order.created_at.desc(), Order.id.desc())
        ))

    def list_orders_for_provider(self, provider_id: int) -> List[Order]:
        return list(self.db.scalars(
            select(Order)
            .where(Order.provider_id == provider_id, Order.status != BookingStatus.CART.value)
            .order_by(Order.created_at.desc(), Order.id.desc())
        ))
