"""Models: table-backed record types with attributes, relations, validations and callbacks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from tinyexpress.query import Executor, Query, QueryError
from tinyexpress.records import ModelInstance, ModelInstanceCollection

log = logging.getLogger(__name__)

InstanceCallback = Callable[[ModelInstance], Any]
BeforeCallback = Callable[[ModelInstance], Any]


@dataclass(frozen=True)
class ClassAttribute:
    """An attribute declared on a model."""

    name: str
    type: str


@dataclass(frozen=True)
class Validation:
    """A named validation applied to one attribute."""

    attribute_name: str
    validation: str


@dataclass(frozen=True)
class Relationship:
    """A link to another table through a foreign key."""

    table_name: str
    foreign_key: str


class ModelStore:
    """The models known to one request, looked up by table name."""

    def __init__(self) -> None:
        self.models: list[Model] = []

    def __len__(self) -> int:
        return len(self.models)

    def add(self, model: Model) -> None:
        self.models.append(model)

    def lookup(self, table_name: str) -> Model | None:
        """The model for ``table_name``, or None."""
        return next((m for m in self.models if m.table_name == table_name), None)


def _text(value: Any) -> Any:
    return None if value is None else str(value)


@dataclass
class _ModelQuery(Query):
    """A query whose ``all`` and ``find`` build model instances."""

    model: Any = field(default=None, repr=False)

    def _instance_from_row(self, columns: tuple[str, ...], row: tuple[Any, ...],
                           record_id: Any) -> ModelInstance:
        instance = ModelInstance(self.model, _text(record_id))
        for name, value in zip(columns, row):
            if self.model.get_attribute(name) is not None:
                instance.init_attr(name, _text(value), False)
        return instance

    def all(self) -> ModelInstanceCollection:  # type: ignore[override]
        result = super().all()
        if not result.ok:
            log.error("%s", result.error)
            raise QueryError(result.error)
        return ModelInstanceCollection(
            self.model,
            (self._instance_from_row(result.columns, row, row[0]) for row in result.rows),
        )

    def find(self, record_id: Any) -> ModelInstance | None:  # type: ignore[override]
        if not record_id:
            log.error("id is required")
            raise ValueError("id is required")
        result = super().find(record_id)
        if not result.ok:
            log.error("%s", result.error)
            raise QueryError(result.error)
        if not result.rows:
            return None
        return self._instance_from_row(result.columns, result.rows[0], record_id)


class Model:
    """A table together with its declared attributes, relations and hooks."""

    def __init__(self, table_name: str, db: Executor | None, store: ModelStore) -> None:
        self.table_name = table_name
        self.db = db
        self.store = store
        self.attributes: list[ClassAttribute] = []
        self.validations: list[Validation] = []
        self.belongs_to_relationships: list[Relationship] = []
        self.has_many_relationships: list[Relationship] = []
        self.has_one_relationships: list[Relationship] = []
        self.validates_callbacks: list[InstanceCallback] = []
        self.before_save_callbacks: list[BeforeCallback] = []
        self.after_save_callbacks: list[InstanceCallback] = []
        self.before_destroy_callbacks: list[BeforeCallback] = []
        self.after_destroy_callbacks: list[InstanceCallback] = []
        self.before_update_callbacks: list[BeforeCallback] = []
        self.after_update_callbacks: list[InstanceCallback] = []
        self.before_create_callbacks: list[BeforeCallback] = []
        self.after_create_callbacks: list[InstanceCallback] = []
        store.add(self)

    def __repr__(self) -> str:
        return f"Model({self.table_name!r})"

    def lookup(self, table_name: str) -> Model | None:
        return self.store.lookup(table_name)

    def query(self) -> Query:
        """A fresh query on this table whose ``all``/``find`` yield instances."""
        return _ModelQuery(self.table_name, db=self.db, model=self)

    def find(self, record_id: Any) -> ModelInstance | None:
        return self.query().find(record_id)

    def all(self) -> ModelInstanceCollection:
        return self.query().all()

    def attribute(self, name: str, type_name: str) -> None:
        self.attributes.append(ClassAttribute(name, type_name))

    def get_attribute(self, name: str) -> ClassAttribute | None:
        return next((attr for attr in self.attributes if attr.name == name), None)

    def validates_attribute(self, name: str, validation: str) -> None:
        self.validations.append(Validation(name, validation))

    def new(self) -> ModelInstance:
        return ModelInstance(self)

    def belongs_to(self, table_name: str, foreign_key: str) -> None:
        """Declare a parent table; the foreign key becomes an integer attribute."""
        self.attribute(foreign_key, "integer")
        self.belongs_to_relationships.append(Relationship(table_name, foreign_key))

    def has_many(self, table_name: str, foreign_key: str) -> None:
        self.has_many_relationships.append(Relationship(table_name, foreign_key))

    def has_one(self, table_name: str, foreign_key: str) -> None:
        self.has_one_relationships.append(Relationship(table_name, foreign_key))

    def _related_table(self, relation_name: str) -> str | None:
        related = self.lookup(relation_name)
        if related is None:
            log.error("Could not find model '%s'", relation_name)
            return None
        return related.table_name

    @staticmethod
    def _key_for(relationships: list[Relationship], table_name: str) -> str | None:
        return next(
            (rel.foreign_key for rel in relationships if rel.table_name == table_name),
            None,
        )

    def get_foreign_key(self, relation_name: str) -> str | None:
        """Column matched against this model's ids when loading ``relation_name``."""
        table_name = self._related_table(relation_name)
        if table_name is None:
            return None
        for relationships in (self.has_many_relationships, self.has_one_relationships):
            key = self._key_for(relationships, table_name)
            if key is not None:
                return key
        if self._key_for(self.belongs_to_relationships, table_name) is not None:
            return "id"
        log.error("Could not find foreign key for '%s'", relation_name)
        return None

    def get_belongs_to_key(self, relation_name: str) -> str | None:
        """The foreign key of the belongs-to relation ``relation_name``."""
        table_name = self._related_table(relation_name)
        if table_name is None:
            return None
        key = self._key_for(self.belongs_to_relationships, table_name)
        if key is None:
            log.error("Could not find belongs to key for '%s'", relation_name)
        return key

    def validates(self, callback: InstanceCallback) -> None:
        self.validates_callbacks.append(callback)

    def before_save(self, callback: BeforeCallback) -> None:
        self.before_save_callbacks.append(callback)

    def after_save(self, callback: InstanceCallback) -> None:
        self.after_save_callbacks.append(callback)

    def before_destroy(self, callback: BeforeCallback) -> None:
        self.before_destroy_callbacks.append(callback)

    def after_destroy(self, callback: InstanceCallback) -> None:
        self.after_destroy_callbacks.append(callback)

    def before_update(self, callback: BeforeCallback) -> None:
        self.before_update_callbacks.append(callback)

    def after_update(self, callback: InstanceCallback) -> None:
        self.after_update_callbacks.append(callback)

    def before_create(self, callback: BeforeCallback) -> None:
        self.before_create_callbacks.append(callback)

    def after_create(self, callback: InstanceCallback) -> None:
        self.after_create_callbacks.append(callback)