"""
TransactionHistoryService -- read side of the ledger.

Each principal sees the ledger rows they are party to:

    admin     every row
    vendor    rows naming the vendor (payouts, withdrawals, order loans)
    retailer  rows naming the retailer; an agent additionally sees the
              rows of agent purchases they captured

Rows come back newest first as frozen ``LedgerTransactionInfo``.
"""

from uuid import UUID

from sqlalchemy import or_, select

from amana_kernel.domain.dtos import LedgerTransactionInfo
from amana_kernel.domain.principal import Principal, Role
from amana_kernel.exceptions import AuthorizationError
from amana_kernel.models.agent_purchase import AgentPurchase
from amana_kernel.models.transaction import LedgerTransaction, TransactionType
from amana_kernel.services.base import BaseService


class TransactionHistoryService(BaseService[LedgerTransaction]):

    def list_transactions(
        self,
        principal: Principal,
        tx_type: TransactionType | None = None,
    ) -> list[LedgerTransactionInfo]:
        stmt = select(LedgerTransaction).order_by(
            LedgerTransaction.created_at.desc(), LedgerTransaction.id
        )
        if principal.role == Role.VENDOR:
            stmt = stmt.where(LedgerTransaction.vendor_id == principal.id)
        elif principal.role == Role.RETAILER:
            visible = LedgerTransaction.retailer_id == principal.id
            if principal.is_agent:
                captured = select(AgentPurchase.id).where(AgentPurchase.agent_id == principal.id)
                visible = or_(visible, LedgerTransaction.agent_purchase_id.in_(captured))
            stmt = stmt.where(visible)

        if tx_type is not None:
            stmt = stmt.where(LedgerTransaction.type == TransactionType(tx_type).value)
        return [tx.to_dto() for tx in self.session.execute(stmt).scalars().all()]

    def get_transaction(self, principal: Principal, transaction_id: UUID) -> LedgerTransactionInfo:
        tx = self._get(LedgerTransaction, transaction_id, "LedgerTransaction")
        if principal.is_admin:
            return tx.to_dto()
        if principal.role == Role.VENDOR and tx.vendor_id == principal.id:
            return tx.to_dto()
        if principal.role == Role.RETAILER:
            if tx.retailer_id == principal.id:
                return tx.to_dto()
            if principal.is_agent and tx.agent_purchase_id is not None:
                aap = self.session.get(AgentPurchase, tx.agent_purchase_id)
                if aap is not None and aap.agent_id == principal.id:
                    return tx.to_dto()
        raise AuthorizationError(str(principal.id), "view transaction", "not a party to this transaction")
