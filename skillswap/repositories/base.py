from abc import ABC
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy.orm import Query, Session

T = TypeVar("T")
SchemaType = TypeVar("SchemaType", bound=BaseModel)


class BaseRepository(Generic[T, SchemaType], ABC):
    """
    리포지토리 베이스

    flush까지만 수행하며 commit/rollback은 서비스 계층이 소유합니다.
    조회 메서드는 Pydantic 스키마를, get_model은 ORM 인스턴스를 반환합니다.
    """

    def __init__(
        self, model_class: Type[T], schema_class: Type[SchemaType], db: Session
    ):
        self.model_class = model_class
        self.schema_class = schema_class
        self.db = db

    def _to_schema(self, instance: Any) -> Optional[SchemaType]:
        return None if instance is None else self.schema_class.model_validate(instance)

    def _to_schemas(self, instances: List[Any]) -> List[SchemaType]:
        return [self._to_schema(instance) for instance in instances]

    def _filtered(self, filters: Optional[Dict[str, Any]] = None) -> Query:
        """컬럼명=값 동등 조건 (모델에 없는 키는 무시)"""
        query = self.db.query(self.model_class)
        for key, value in (filters or {}).items():
            column = getattr(self.model_class, key, None)
            if column is not None:
                query = query.filter(column == value)
        return query

    def get_model(self, id: Any, for_update: bool = False) -> Optional[T]:
        """
        ID로 ORM 인스턴스 조회

        for_update=True면 SELECT ... FOR UPDATE 후 identity map의 값을 DB 값으로 덮어씁니다.
        """
        query = self._filtered({"id": id})
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    def get_by_id(self, id: Any) -> Optional[SchemaType]:
        return self._to_schema(self.get_model(id))

    def add(self, instance: T) -> T:
        """추가 후 flush (PK 할당)"""
        self.db.add(instance)
        self.db.flush()
        return instance

    def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        return self._filtered(filters).count()

    def exists(self, filters: Dict[str, Any]) -> bool:
        return self._filtered(filters).first() is not None
