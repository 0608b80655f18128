"""Policy repository - terms/privacy snapshots"""

import hashlib
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Policy


def terms_content_hash(terms_text: str) -> str:
    return hashlib.sha256(terms_text.encode("utf-8")).hexdigest()


class PolicyRepository:
    @staticmethod
    def list_policies(db: Session, include_inactive: bool = False) -> list[Policy]:
        query = db.query(Policy)
        if not include_inactive:
            query = query.filter(Policy.is_active.is_(True))
        return query.order_by(Policy.created_at.desc()).all()

    @staticmethod
    def get_policy(db: Session, policy_id: str) -> Optional[Policy]:
        return db.query(Policy).filter(Policy.id == policy_id).first()

    @staticmethod
    def create_policy(db: Session, **values) -> Policy:
        """Insert a policy; a new default replaces the previous one in the same commit"""
        if values.get("is_default"):
            db.query(Policy).filter(Policy.is_default.is_(True)).update(
                {"is_default": False}, synchronize_session=False
            )
        policy = Policy(
            terms_content_sha256=terms_content_hash(values["terms_text"]),
            **values,
        )
        db.add(policy)
        db.commit()
        db.refresh(policy)
        return policy
