from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.orm import Session

from ..core.database import Base
from ..core.errors import NotFound

ModelT = TypeVar("ModelT", bound=Base)

class RecordStore(Generic[ModelT]):
    """Keyed storage for one model. Never commits; callers own the transaction."""

    def __init__(self, db: Session, model: Type[ModelT], label: Optional[str] = None):
        self.db = db
        self.model = model
        self.label = label or model.__name__

    def get(self, key: Any) -> Optional[ModelT]:
        return self.db.get(self.model, key)

    def require(self, key: Any) -> ModelT:
        """Get a record or raise NotFound."""
        record = self.get(key)
        if record is None:
            raise NotFound(f"{self.label} not found: {key}")
        return record

    def put(self, record: ModelT) -> ModelT:
        self.db.add(record)
        self.db.flush()
        return record

    def delete(self, key: Any) -> bool:
        record = self.get(key)
        if record is None:
            return False
        self.db.delete(record)
        self.db.flush()
        return True

    def list_by(self, order_by=None, **filters: Any) -> List[ModelT]:
        """List records whose columns equal the given values; None values are ignored."""
        query = self.db.query(self.model)
        for column, value in filters.items():
            if value is not None:
                query = query.filter(getattr(self.model, column) == value)
        if order_by is not None:
            query = query.order_by(order_by)
        return query.all()

    def list_all(self, order_by=None) -> List[ModelT]:
        return self.list_by(order_by=order_by)

    def count(self, **filters: Any) -> int:
        query = self.db.query(self.model)
        for column, value in filters.items():
            if value is not None:
                query = query.filter(getattr(self.model, column) == value)
        return query.count()
