from typing import TypeVar, Generic, Type, Any, Optional, List, Dict
from sqlalchemy import select
from sqlalchemy.orm import Session
from pydantic import BaseModel
from app.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)

class CRUDBase(Generic[ModelType]):
    def __init__(self, model: Type[ModelType]): self.model = model

    def get_by(self, db: Session, **filters: Any) -> Optional[ModelType]:
        stmt = select(self.model).filter_by(**filters)
        return db.execute(stmt).scalar_one_or_none()

    def list_by(self, db: Session, **filters: Any) -> List[ModelType]:
        stmt = select(self.model).filter_by(**filters).order_by(self.model.id)
        return list(db.execute(stmt).scalars().all())

    def build(self, obj_in: BaseModel | Dict[str, Any], extra: Dict[str, Any] | None = None) -> ModelType:
        data = obj_in if isinstance(obj_in, dict) else obj_in.model_dump()
        data = dict(data)
        if extra: data.update(extra)
        return self.model(**data)

    def create(self, db: Session, obj_in: BaseModel | Dict[str, Any], extra: Dict[str, Any] | None = None) -> ModelType:
        obj = self.build(obj_in, extra)
        db.add(obj); db.commit(); db.refresh(obj)
        return obj

    def update(self, db: Session, db_obj: ModelType, obj_in: BaseModel | Dict[str, Any]) -> ModelType:
        data = obj_in if isinstance(obj_in, dict) else obj_in.model_dump(exclude_unset=True)
        for f,v in data.items(): setattr(db_obj, f, v)
        db.add(db_obj); db.commit(); db.refresh(db_obj)
        return db_obj

