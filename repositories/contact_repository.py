"""
ContactRepository - Data access layer for Contact entities
Segments are evaluated against this store with compiled rule clauses.
Membership reads let SQLAlchemyError propagate to the caller.
"""

from typing import List, Optional, Iterable
from sqlalchemy.orm import Query
from repositories.base_repository import BaseRepository
from crm_database import Contact


class ContactRepository(BaseRepository[Contact]):
    """Repository for Contact data access"""

    def __init__(self, session):
        super().__init__(session, Contact)

    def _matching(self, tenant_id: str, clause=None) -> Query:
        query = self.session.query(Contact).filter(Contact.tenant_id == tenant_id)
        if clause is not None:
            query = query.filter(clause)
        return query

    def find_matching(self, tenant_id: str, clause=None, limit: Optional[int] = None) -> List[Contact]:
        """
        Find a tenant's contacts that satisfy a compiled segment clause.

        Args:
            tenant_id: Owning tenant
            clause: SQLAlchemy boolean clause, or None to match every contact
            limit: Optional cap on returned rows

        Returns:
            Matching contacts ordered by id

        Raises:
            SQLAlchemyError: If the query fails
        """
        query = self._matching(tenant_id, clause).order_by(Contact.id)
        if limit:
            query = query.limit(limit)
        return query.all()

    def find_matching_ids(self, tenant_id: str, clause=None) -> List[int]:
        """Same as find_matching but returns only ids"""
        rows = self._matching(tenant_id, clause).with_entities(Contact.id).order_by(Contact.id).all()
        return [row[0] for row in rows]

    def count_matching(self, tenant_id: str, clause=None) -> int:
        """Count a tenant's contacts that satisfy a compiled clause"""
        return self._matching(tenant_id, clause).count()

    def contact_matches(self, tenant_id: str, contact_id: int, clause=None) -> bool:
        """Check whether one contact satisfies a clause"""
        query = self._matching(tenant_id, clause).filter(Contact.id == contact_id)
        return query.first() is not None

    def find_by_ids(self, tenant_id: str, contact_ids: Iterable[int]) -> List[Contact]:
        """
        Load a tenant's contacts by id, preserving the order of ``contact_ids``.

        Ids that do not exist or belong to another tenant are dropped.
        """
        ids = list(contact_ids)
        if not ids:
            return []
        contacts = self._matching(tenant_id, Contact.id.in_(ids)).all()
        by_id = {contact.id: contact for contact in contacts}
        return [by_id[contact_id] for contact_id in ids if contact_id in by_id]
