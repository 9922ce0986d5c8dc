from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from marketplace.domain.exceptions import Conflict, InvalidState, NotFound, PermissionDenied, ValidationError
from marketplace.domain.models import ProviderEarning, WithdrawalRequest, utcnow
from marketplace.domain.pricing import ZERO, format_money, parse_positive_money, to_money
from marketplace.domain.status import UserRole, WithdrawalStatus
from marketplace.infrastructure.notifications import NotificationDispatcher
from marketplace.infrastructure.repositories import DirectoryRepository
from .base import BaseService
from .earnings import EarningsService
from .schemas import WithdrawalCreate


def insufficient_balance(available: Decimal) -> Conflict:
    return Conflict(f"Insufficient balance. Available balance: {format_money(available)}")


class WithdrawalService(BaseService):
    """Payout requests against unwithdrawn earnings, settled oldest-first on approval."""

    def __init__(
        self,
        db: Session,
        earnings: Optional[EarningsService] = None,
        directory: Optional[DirectoryRepository] = None,
        notifier: Optional[NotificationDispatcher] = None,
    ):
        super().__init__(db)
        self.earnings = earnings or EarningsService(db)
        self.directory = directory or DirectoryRepository(db)
        self.notifier = notifier or NotificationDispatcher()

    def create_withdrawal_request(self, provider_id: int, data: WithdrawalCreate) -> WithdrawalRequest:
        amount = parse_positive_money(data.amount, "amount")
        with self.unit_of_work():
            if not self.directory.get_provider(provider_id):
                raise NotFound(f"Provider {provider_id} not found")
            available = self.earnings.get_available_balance(provider_id)
            if amount > available:
                self.logger.warning(
                    f"Rejected withdrawal of {amount} for provider {provider_id}: available {available}",
                )
                raise insufficient_balance(available)
            request = WithdrawalRequest(
                provider_id=provider_id,
                amount=amount,
                status=WithdrawalStatus.PENDING.value,
                **data.model_dump(exclude={"amount"}),
            )
            self.db.add(request)
            self.db.flush()
        self.logger.info(
            f"Withdrawal request {request.id} for provider {provider_id}: {amount}",
            extra={'extra_fields': {'withdrawal_id': request.id, 'amount': amount, 'available': available}},
        )
        return request

    def _settle_fifo(self, request: WithdrawalRequest) -> Decimal:
        """Mark whole earnings withdrawn, oldest first, while they fit in the requested amount.

        An earning larger than what is left is skipped, never split, so the
        settled sum can fall short of the request.
        """
        earnings = list(self.db.scalars(
            select(ProviderEarning)
            .where(
                ProviderEarning.provider_id == request.provider_id,
                ProviderEarning.is_withdrawn.is_(False),
            )
            .order_by(ProviderEarning.created_at.asc(), ProviderEarning.id.asc())
            .with_for_update()
        ))
        available = to_money(sum((e.provider_amount for e in earnings), ZERO))
        if request.amount > available:
            raise insufficient_balance(available)

        now = utcnow()
        remaining = to_money(request.amount)
        settled = ZERO
        for earning in earnings:
            if remaining <= 0:
                break
            if earning.provider_amount <= remaining:
                earning.is_withdrawn = True
                earning.withdrawn_at = now
                remaining -= earning.provider_amount
                settled += earning.provider_amount
        return settled

    def process_withdrawal_request(
        self,
        withdrawal_id: int,
        status,
        admin_id: int,
        admin_notes: Optional[str] = None,
    ) -> WithdrawalRequest:
        try:
            decision = WithdrawalStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown withdrawal status '{status}'")
        if decision == WithdrawalStatus.PENDING:
            raise ValidationError("A withdrawal can only be approved or rejected")

        settled = None
        with self.unit_of_work():
            admin = self.directory.get_user_by_id(admin_id)
            if not admin or admin.user_type != UserRole.ADMIN.value:
                raise PermissionDenied("Only admins can process withdrawal requests")
            request = self.db.get(WithdrawalRequest, withdrawal_id, with_for_update=True)
            if not request:
                raise NotFound(f"Withdrawal request {withdrawal_id} not found")
            if request.status != WithdrawalStatus.PENDING.value:
                raise InvalidState(f"Withdrawal request {withdrawal_id} was already {request.status}")

            if decision == WithdrawalStatus.APPROVED:
                settled = self._settle_fifo(request)

            request.status = decision.value
            request.processed_by = admin_id
            request.processed_at = utcnow()
            request.admin_notes = admin_notes
            self.db.flush()

        fields = {
            'withdrawal_id': request.id,
            'provider_id': request.provider_id,
            'status': request.status,
            'amount': request.amount,
            'settled': settled,
        }
        if settled is not None and settled < request.amount:
            self.logger.warning(
                f"Withdrawal {request.id} approved for {request.amount} but only {settled} "
                f"of whole earnings fit; the rest stays available",
                extra={'extra_fields': fields},
            )
        else:
            self.logger.info(f"Withdrawal {request.id} {request.status}", extra={'extra_fields': fields})

        provider = self.directory.get_provider(request.provider_id)
        if provider:
            self.notifier.notify(
                provider.user_id,
                f"Withdrawal {request.status}",
                f"Your withdrawal of {format_money(request.amount)} was {request.status}.",
                kind="withdrawal",
            )
        return request

    def list_withdrawal_requests(
        self,
        provider_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> List[WithdrawalRequest]:
        query = select(WithdrawalRequest).order_by(
            WithdrawalRequest.created_at.desc(), WithdrawalRequest.id.desc()
        )
        if provider_id is not None:
            query = query.where(WithdrawalRequest.provider_id == provider_id)
        if status:
            try:
                status = WithdrawalStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown withdrawal status '{status}'")
            query = query.where(WithdrawalRequest.status == status.value)
        return list(self.db.scalars(query))
