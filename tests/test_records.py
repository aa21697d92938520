from dataclasses import dataclass

import pytest

from tinyexpress.query import Query, QueryResult
from tinyexpress.records import ModelInstance, ModelInstanceCollection


@dataclass
class FakeAttr:
    name: str
    type: str = "text"


@dataclass
class FakeRel:
    table_name: str
    foreign_key: str


@dataclass
class FakeValidation:
    attribute_name: str
    validation: str


class FakeDb:
    def __init__(self, result=None):
        self.result = result if result is not None else QueryResult()
        self.calls = []

    def exec_params(self, sql, params):
        self.calls.append((sql, list(params)))
        return self.result


class FakeModel:
    def __init__(self, table_name, attributes=(), db=None, store=None):
        self.table_name = table_name
        self.attributes = [FakeAttr(name) for name in attributes]
        self.db = db if db is not None else FakeDb()
        self.store = store if store is not None else {}
        self.store[table_name] = self
        self.has_many_relationships = []
        self.has_one_relationships = []
        self.belongs_to_relationships = []
        self.validations = []
        self.validates_callbacks = []
        self.before_save_callbacks = []
        self.after_save_callbacks = []
        self.before_update_callbacks = []
        self.after_update_callbacks = []
        self.before_create_callbacks = []
        self.after_create_callbacks = []
        self.before_destroy_callbacks = []
        self.after_destroy_callbacks = []

    def get_attribute(self, name):
        return next((a for a in self.attributes if a.name == name), None)

    def lookup(self, name):
        return self.store.get(name)

    def query(self):
        return Query(self.table_name, db=self.db)

    def get_foreign_key(self, relation_name):
        for rel in self.has_many_relationships:
            if rel.table_name == relation_name:
                return rel.foreign_key
        return None


def test_set_and_get_round_trip():
    model = FakeModel("users", ["name"])
    inst = ModelInstance(model, "3")
    inst.set("name", "Ann")
    assert inst.get("name") == "Ann"
    assert inst.get("id") == "3"
    assert inst.attributes[0].is_dirty is True


def test_set_existing_updates_in_place():
    model = FakeModel("users", ["name"])
    inst = ModelInstance(model)
    inst.init_attr("name", "Ann", False)
    inst.set("name", "Bob")
    assert len(inst.attributes) == 1
    assert inst.get("name") == "Bob"
    assert inst.attributes[0].is_dirty is True


def test_unknown_attribute_raises():
    inst = ModelInstance(FakeModel("users", ["name"]))
    with pytest.raises(KeyError):
        inst.set("age", "4")
    assert inst.get("age") is None


def test_presence_validation():
    model = FakeModel("users", ["name"])
    model.validations.append(FakeValidation("name", "presence"))
    inst = ModelInstance(model)
    assert inst.validate() is False
    assert inst.errors == [("name", "is required")]
    assert inst.is_valid() is False
    inst.set("name", "Ann")
    assert inst.validate() is True
    assert inst.errors == []


def test_custom_validation_callback():
    model = FakeModel("users", ["name"])
    model.validates_callbacks.append(lambda i: i.add_error("name", "bad"))
    inst = ModelInstance(model)
    assert inst.validate() is False
    assert inst.errors == [("name", "bad")]


def test_save_inserts_and_sets_id():
    db = FakeDb(QueryResult(columns=("id",), rows=[("7",)]))
    model = FakeModel("users", ["name", "email"], db=db)
    created = []
    model.after_create_callbacks.append(created.append)
    inst = ModelInstance(model)
    inst.set("name", "Ann")
    inst.set("email", "ann@example.com")
    assert inst.save() is True
    assert inst.id == "7"
    assert db.calls == [
        (
            "INSERT INTO users (name, email) VALUES ($1, $2) RETURNING id;",
            ["Ann", "ann@example.com"],
        )
    ]
    assert created == [inst]
    assert all(not attr.is_dirty for attr in inst.attributes)


def test_save_updates_existing_record():
    db = FakeDb(QueryResult())
    model = FakeModel("users", ["name"], db=db)
    updated, created = [], []
    model.after_update_callbacks.append(updated.append)
    model.after_create_callbacks.append(created.append)
    inst = ModelInstance(model, "5")
    inst.set("name", "Ann")
    assert inst.save() is True
    sql, params = db.calls[0]
    assert sql == "UPDATE users SET (name) = ($1) WHERE id = $2"
    assert params == ["Ann", "5"]
    assert updated == [inst]
    assert created == []


def test_save_without_changes_does_nothing():
    db = FakeDb()
    model = FakeModel("users", ["name"], db=db)
    inst = ModelInstance(model, "5")
    inst.init_attr("name", "Ann", False)
    assert inst.save() is False
    assert db.calls == []


def test_before_save_can_abort():
    db = FakeDb()
    model = FakeModel("users", ["name"], db=db)
    model.before_save_callbacks.append(lambda i: False)
    inst = ModelInstance(model)
    inst.set("name", "Ann")
    assert inst.save() is False
    assert db.calls == []


def test_failed_update_returns_false_but_runs_after_save():
    db = FakeDb(QueryResult(ok=False, error="boom"))
    model = FakeModel("users", ["name"], db=db)
    saved = []
    model.after_save_callbacks.append(saved.append)
    inst = ModelInstance(model, "5")
    inst.set("name", "Ann")
    assert inst.save() is False
    assert saved == [inst]


def test_destroy_with_id():
    db = FakeDb(QueryResult())
    model = FakeModel("users", db=db)
    inst = ModelInstance(model, "9")
    assert inst.destroy() is True
    assert db.calls == [("DELETE FROM users WHERE id = $1", ["9"])]


def test_destroy_without_id_runs_after_callbacks():
    db = FakeDb()
    model = FakeModel("users", db=db)
    destroyed = []
    model.after_destroy_callbacks.append(destroyed.append)
    inst = ModelInstance(model)
    assert inst.destroy() is False
    assert destroyed == [inst]
    assert db.calls == []


def _related_models():
    store = {}
    users = FakeModel("users", ["name"], store=store)
    posts = FakeModel("posts", ["user_id"], store=store)
    profiles = FakeModel("profiles", ["user_id"], store=store)
    users.has_many_relationships.append(FakeRel("posts", "user_id"))
    users.has_one_relationships.append(FakeRel("profiles", "user_id"))
    posts.belongs_to_relationships.append(FakeRel("users", "user_id"))
    return users, posts, profiles


def test_r_has_many():
    users, _, _ = _related_models()
    query = ModelInstance(users, "4").r("posts")
    assert query.table_name == "posts"
    assert query.params == ["4"]
    assert query.limit_condition == ""


def test_r_has_one_limits_to_one():
    users, _, _ = _related_models()
    query = ModelInstance(users, "4").r("profiles")
    assert query.table_name == "profiles"
    assert query.params == ["4"]
    assert query.limit_condition == "1"


def test_r_belongs_to():
    _, posts, _ = _related_models()
    post = ModelInstance(posts, "2")
    post.init_attr("user_id", "4", False)
    query = post.r("users")
    assert query.table_name == "users"
    assert query.params == ["4"]


def test_r_unknown_relation_raises():
    users, _, _ = _related_models()
    with pytest.raises(KeyError):
        ModelInstance(users, "4").r("comments")
    _, posts, _ = _related_models()
    with pytest.raises(KeyError):
        ModelInstance(posts, "1").r("profiles")


def _collection():
    model = FakeModel("users", ["name"])
    items = []
    for record_id, name in [("1", "Ann"), ("2", "Bob"), ("3", "Cy")]:
        inst = ModelInstance(model, record_id)
        inst.init_attr("name", name, False)
        items.append(inst)
    return model, ModelInstanceCollection(model, items)


def test_collection_at_and_bounds():
    _, coll = _collection()
    assert len(coll) == 3
    assert coll.at(1).get("name") == "Bob"
    with pytest.raises(IndexError):
        coll.at(3)
    with pytest.raises(IndexError):
        coll.at(-1)


def test_collection_each_and_each_with_index():
    _, coll = _collection()
    seen = []
    coll.each(lambda i: seen.append(i.id))
    assert seen == ["1", "2", "3"]
    pairs = []
    coll.each_with_index(lambda i, n: pairs.append((n, i.id)))
    assert pairs == [(0, "1"), (1, "2"), (2, "3")]


def test_collection_filter_find_map_reduce():
    _, coll = _collection()
    filtered = coll.filter(lambda i: i.get("name") != "Bob")
    assert [i.id for i in filtered] == ["1", "3"]
    assert coll.find(lambda i: i.get("name") == "Cy").id == "3"
    assert coll.find(lambda i: False) is None
    assert coll.map(lambda i: i.get("name")) == ["Ann", "Bob", "Cy"]
    assert coll.reduce("", lambda acc, i: acc + i.id) == "123"


def test_collection_r_uses_where_in():
    users, _, _ = _related_models()
    coll = ModelInstanceCollection(users, [ModelInstance(users, "1"), ModelInstance(users, "2")])
    query = coll.r("posts")
    assert query.params == ["1", "2"]
    assert query.to_sql() == "SELECT * FROM posts WHERE user_id IN ($1,$2)"
    with pytest.raises(KeyError):
        coll.r("comments")