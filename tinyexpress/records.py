"""Model instances (single records) and collections of them.

A model handed to these classes is expected to provide:

* ``table_name``
* ``db``, with ``exec_params(sql, params)`` returning a ``QueryResult``
* ``get_attribute(name)``, returning an object with a ``name`` or None
* ``lookup(table_name)``, returning another model or None
* ``query()``, returning a ``Query``
* ``get_foreign_key(relation_name)``
* ``has_many_relationships``, ``has_one_relationships`` and
  ``belongs_to_relationships``, whose items have ``table_name`` and
  ``foreign_key``
* ``validations``, whose items have ``attribute_name`` and ``validation``
* callback lists: ``validates_callbacks``, ``before_save_callbacks``,
  ``after_save_callbacks``, ``before_update_callbacks``,
  ``after_update_callbacks``, ``before_create_callbacks``,
  ``after_create_callbacks``, ``before_destroy_callbacks`` and
  ``after_destroy_callbacks``
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator

from tinyexpress.query import Query

log = logging.getLogger(__name__)

PRESENCE = "presence"
REQUIRED_MESSAGE = "is required"


@dataclass
class _InstanceAttribute:
    class_attribute: Any
    value: Any
    is_dirty: bool

    @property
    def name(self) -> str:
        return self.class_attribute.name


def _find_foreign_key(relationships: Iterable[Any], table_name: str) -> str | None:
    return next(
        (rel.foreign_key for rel in relationships if rel.table_name == table_name),
        None,
    )


class ModelInstance:
    """One record of a model, with its attribute values and validation errors."""

    def __init__(self, model: Any, record_id: str | None = None) -> None:
        self.model = model
        self.id = record_id
        self.attributes: list[_InstanceAttribute] = []
        self.errors: list[tuple[str, str]] = []

    def __repr__(self) -> str:
        return f"ModelInstance({self.model.table_name!r}, id={self.id!r})"

    def _attribute(self, name: str) -> _InstanceAttribute | None:
        return next((attr for attr in self.attributes if attr.name == name), None)

    def _before(self, callbacks: Iterable[Callable[[ModelInstance], Any]]) -> bool:
        return all(callback(self) for callback in callbacks)

    def _after(self, callbacks: Iterable[Callable[[ModelInstance], Any]]) -> None:
        for callback in callbacks:
            callback(self)

    def init_attr(self, attribute: str, value: Any, is_dirty: bool) -> None:
        """Add a value for ``attribute``; the model must declare the attribute."""
        class_attribute = self.model.get_attribute(attribute)
        if class_attribute is None:
            log.error("'%s' does not have attribute '%s'", self.model.table_name, attribute)
            raise KeyError(f"'{self.model.table_name}' does not have attribute '{attribute}'")
        self.attributes.append(_InstanceAttribute(class_attribute, value, bool(is_dirty)))

    def get(self, attribute: str) -> Any:
        """Value of ``attribute``; ``"id"`` gives the record id."""
        if attribute == "id":
            return self.id
        found = self._attribute(attribute)
        return found.value if found is not None else None

    def set(self, attribute: str, value: Any) -> None:
        """Set ``attribute`` to ``value`` and mark it for saving."""
        found = self._attribute(attribute)
        if found is not None:
            found.value = value
            found.is_dirty = True
        else:
            self.init_attr(attribute, value, True)

    def add_error(self, attribute: str, message: str) -> None:
        self.errors.append((attribute, message))

    def is_valid(self) -> bool:
        return not self.errors

    def validate(self) -> bool:
        """Run the model's validations afresh; True when there are no errors."""
        self.errors = []
        for validation in self.model.validations:
            if validation.validation == PRESENCE and self.get(validation.attribute_name) is None:
                self.add_error(validation.attribute_name, REQUIRED_MESSAGE)
        self._after(self.model.validates_callbacks)
        return not self.errors

    def save(self) -> bool:
        """Insert or update the changed attributes; True if the record was written."""
        model = self.model
        if not self._before(model.before_save_callbacks):
            return False
        if not self.validate():
            return False

        dirty = [attr for attr in self.attributes if attr.is_dirty]
        if not dirty:
            return False

        names = ", ".join(attr.name for attr in dirty)
        placeholders = ", ".join(f"${index}" for index in range(1, len(dirty) + 1))
        values: list[Any] = [attr.value for attr in dirty]

        if self.id:
            if not self._before(model.before_update_callbacks):
                return False
            values.append(self.id)
            sql = (
                f"UPDATE {model.table_name} SET ({names}) = ({placeholders}) "
                f"WHERE id = ${len(values)}"
            )
        else:
            if not self._before(model.before_create_callbacks):
                return False
            sql = (
                f"INSERT INTO {model.table_name} ({names}) "
                f"VALUES ({placeholders}) RETURNING id;"
            )

        result = model.db.exec_params(sql, values)
        did_save = False
        if not self.id:
            new_id = result.value(0, 0) if result.ok and result.rows else None
            if new_id is not None and str(new_id):
                self.id = str(new_id)
                self._after(model.after_create_callbacks)
                did_save = True
            elif not result.ok:
                log.error("%s", result.error)
        elif not result.ok:
            log.error("%s", result.error)
        else:
            self._after(model.after_update_callbacks)
            did_save = True

        for attr in dirty:
            attr.is_dirty = False
        self._after(model.after_save_callbacks)
        return did_save

    def destroy(self) -> bool:
        """Delete the record; True if the database removed it."""
        model = self.model
        if not self._before(model.before_destroy_callbacks):
            return False
        did_destroy = False
        if self.id:
            result = model.db.exec_params(f"DELETE FROM {model.table_name} WHERE id = $1", [self.id])
            if result.ok:
                did_destroy = True
            else:
                log.error("%s", result.error)
        self._after(model.after_destroy_callbacks)
        return did_destroy

    def r(self, relation_name: str) -> Query:
        """Query for the records of ``relation_name`` related to this one."""
        model = self.model
        related = model.lookup(relation_name)
        if related is None:
            log.error("Could not find model '%s'", relation_name)
            raise KeyError(f"Could not find model '{relation_name}'")

        has_many = _find_foreign_key(model.has_many_relationships, related.table_name)
        if has_many:
            return related.query().where(f"{has_many} = $", self.id)

        has_one = _find_foreign_key(model.has_one_relationships, related.table_name)
        if has_one:
            return related.query().where(f"{has_one} = $", self.id).limit(1)

        belongs_to = _find_foreign_key(model.belongs_to_relationships, related.table_name)
        if belongs_to:
            return related.query().where("id = $", self.get(belongs_to))

        log.error("Could not find relation '%s' on '%s'", relation_name, model.table_name)
        raise KeyError(f"Could not find relation '{relation_name}' on '{model.table_name}'")


class ModelInstanceCollection:
    """An ordered collection of instances of one model."""

    def __init__(self, model: Any, items: Iterable[ModelInstance] = ()) -> None:
        self.model = model
        self.items: list[ModelInstance] = list(items)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[ModelInstance]:
        return iter(self.items)

    def __getitem__(self, index: int) -> ModelInstance:
        return self.at(index)

    def at(self, index: int) -> ModelInstance:
        """Instance at ``index``; raises IndexError when out of bounds."""
        if not 0 <= index < len(self.items):
            log.error(
                "'%s' collection index out of bounds: %s >= %s",
                self.model.table_name, index, len(self.items),
            )
            raise IndexError(f"'{self.model.table_name}' collection index out of bounds: {index}")
        return self.items[index]

    def each(self, callback: Callable[[ModelInstance], Any]) -> None:
        for instance in self.items:
            callback(instance)

    def each_with_index(self, callback: Callable[[ModelInstance, int], Any]) -> None:
        for index, instance in enumerate(self.items):
            callback(instance, index)

    def filter(self, callback: Callable[[ModelInstance], Any]) -> ModelInstanceCollection:
        return ModelInstanceCollection(self.model, (i for i in self.items if callback(i)))

    def find(self, callback: Callable[[ModelInstance], Any]) -> ModelInstance | None:
        return next((instance for instance in self.items if callback(instance)), None)

    def reduce(self, accumulator: Any, reducer: Callable[[Any, ModelInstance], Any]) -> Any:
        for instance in self.items:
            accumulator = reducer(accumulator, instance)
        return accumulator

    def map(self, callback: Callable[[ModelInstance], Any]) -> list[Any]:
        return [callback(instance) for instance in self.items]

    def r(self, relation_name: str) -> Query:
        """Query for the ``relation_name`` records related to any instance here."""
        related = self.model.lookup(relation_name)
        if related is None:
            log.error("'%s' related model '%s' not found", self.model.table_name, relation_name)
            raise KeyError(f"'{self.model.table_name}' related model '{relation_name}' not found")
        foreign_key = self.model.get_foreign_key(relation_name)
        if foreign_key is None:
            raise KeyError(f"foreign key not found for '{relation_name}'")
        ids = [instance.id for instance in self.items]
        return related.query().where_in(foreign_key, True, ids)