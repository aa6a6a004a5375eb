"""Family category helpers used by automatic classification."""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Category

logger = logging.getLogger(__name__)

INVESTMENT_CONTRIBUTIONS_NAME = "Investment Contributions"


class CategoryService:
    """Get-or-create operations on family categories."""

    @staticmethod
    def get_or_create(db: Session, family_id: str, name: str) -> Category:
        """Return the family's category named ``name``, creating it if needed."""
        category = db.query(Category).filter_by(family_id=family_id, name=name).first()
        if category is not None:
            return category

        try:
            with db.begin_nested():
                category = Category(family_id=family_id, name=name)
                db.add(category)
        except IntegrityError:
            # Created concurrently by another sync
            category = db.query(Category).filter_by(family_id=family_id, name=name).one()
        else:
            logger.info("Created category %r for family %s", name, family_id)
        return category

    @staticmethod
    def investment_contributions_category(db: Session, family_id: str) -> Category:
        return CategoryService.get_or_create(db, family_id, INVESTMENT_CONTRIBUTIONS_NAME)
