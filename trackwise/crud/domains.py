"""Read-only lookups against the mirrored domain registry."""

from typing import Iterable, List, Optional
import uuid
from sqlalchemy.orm import Session

from ..models import Domain


def get_domain_by_name(db: Session, domain: str) -> Optional[Domain]:
    """Find a domain by its exact name."""
    return db.query(Domain).filter(Domain.domain == domain).first()


def get_domain_ids_for_owner(db: Session, owner_id: str) -> List[uuid.UUID]:
    """Ids of every domain owned by an account."""
    rows = db.query(Domain.id).filter(Domain.owner_id == owner_id).all()
    return [row[0] for row in rows]


def get_domains_by_ids(db: Session, domain_ids: Iterable[uuid.UUID]) -> List[Domain]:
    """Domains for a set of ids, newest first."""
    domain_ids = list(domain_ids)
    if not domain_ids:
        return []
    return (
        db.query(Domain)
        .filter(Domain.id.in_(domain_ids))
        .order_by(Domain.created_at.desc(), Domain.domain)
        .all()
    )
