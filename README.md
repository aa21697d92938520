# tinyexpress

A small SQL query builder and an active-record style model layer built on it.
It has no dependencies outside the standard library.

The package has three modules:

- `tinyexpress.query`: `Query`, a chainable SELECT builder, with
  `QueryResult`, `StatResult`, `QueryError` and `param_count`.
- `tinyexpress.model`: `Model` and `ModelStore`, which declare tables,
  attributes, validations, relationships and lifecycle callbacks.
- `tinyexpress.records`: `ModelInstance` (one record) and
  `ModelInstanceCollection` (an ordered list of records).

## Talking to a database

Nothing here opens a database connection. Anything with a method
`exec_params(sql, params)` that returns a `QueryResult` can be used as the
database. A `QueryResult` holds `columns`, `rows`, an `ok` flag and an
`error` message; `value(row, column)` reads one cell by column index or name.

```python
from tinyexpress.query import QueryResult

class LoggingDb:
    def exec_params(self, sql, params):
        print(sql, params)
        return QueryResult(columns=("id",), rows=[(1,)])
```

## Building SQL

Each `$` in a condition becomes the next numbered placeholder, and the extra
arguments become the query's parameters. `param_count(text)` counts the `$`
markers; passing a different number of arguments raises `QueryError`.

```python
from tinyexpress.query import Query

query = (
    Query("users")
    .select("id")
    .select("name")
    .where("age > $", "21")
    .order("name", "asc")
    .limit(10)
)
query.to_sql()
# "SELECT id, name FROM users WHERE age > $1 LIMIT 10 ORDER BY name ASC"
query.params
# ["21"]
```

Available clauses: `select`, `where`, `where_in(column, include, values)`
(`IN` or `NOT IN`), `joins`, `group`, `having`, `order` (direction `ASC` or
`DESC`, any case; anything else raises `QueryError`), `limit`, `offset` and
`distinct`. They are emitted in a fixed order: select, from, joins, where,
group by, having, limit, offset, order by. With no `select`, the query
selects `*`. `to_sql()` also stores the text in `query.sql`.

A `Query` created with a `db` can run itself:

- `all()` returns the `QueryResult`.
- `find(record_id)` adds `id = $n` and returns the `QueryResult`.
- `count()` runs `SELECT count(*)` and returns an integer.
- `stat(attribute, stat)` runs `min`, `max`, `average` (SQL `avg`) or `sum`
  and returns a `StatResult` whose `value` is the result as text.

`count` and `stat` raise `QueryError` when the result is not `ok`; a query
with no `db` raises `QueryError` when run.

## Models

```python
from tinyexpress.model import Model, ModelStore

store = ModelStore()
posts = Model("posts", LoggingDb(), store)
posts.attribute("title", "text")
posts.validates_attribute("title", "presence")

post = posts.new()
post.save()          # False
post.errors          # [("title", "is required")]

post.set("title", "Hello")
post.save()          # True
# INSERT INTO posts (title) VALUES ($1) RETURNING id; ['Hello']
post.id              # "1"

post.set("title", "Goodbye")
post.save()          # True
# UPDATE posts SET (title) = ($1) WHERE id = $2 ['Goodbye', '1']
```

A `ModelInstance` tracks which attributes changed since they were loaded or
saved and writes only those. `get("id")` returns the record id. Setting an
attribute the model does not declare raises `KeyError`. `destroy()` deletes
the record by id.

`validate()` clears the errors, applies every `"presence"` validation and
then calls the callbacks registered with `validates`, which report problems
through `add_error(attribute, message)`. `is_valid()` is true when there are
no errors.

Callbacks registered with `before_save`, `before_create`, `before_update` or
`before_destroy` stop the operation by returning a false value;
`after_save`, `after_create`, `after_update` and `after_destroy` run after
the statement.

### Loading records

`Model.query()` returns a query on the model's table whose `all()` returns a
`ModelInstanceCollection` and whose `find(record_id)` returns a
`ModelInstance` or `None`. `Model.all()` and `Model.find(record_id)` are
shortcuts. Only columns that are declared attributes are loaded; the first
column of each row is taken as the id for `all()`.

A collection supports `len`, iteration, indexing, `at` (raises `IndexError`
out of range), `each`, `each_with_index`, `filter`, `find`, `reduce` and
`map`.

### Relationships

```python
comments = Model("comments", LoggingDb(), store)
comments.belongs_to("posts", "post_id")   # also declares post_id as an integer attribute
posts.has_many("comments", "post_id")

post.r("comments").to_sql()
# "SELECT * FROM comments WHERE post_id = $1"
```

`ModelInstance.r(name)` builds a query for related records through
`has_many`, `has_one` (with `LIMIT 1`) or `belongs_to`;
`ModelInstanceCollection.r(name)` does the same for every record in the
collection with `WHERE ... IN (...)`. Unknown models or relations raise
`KeyError`. `Model.get_foreign_key` and `Model.get_belongs_to_key` return
the key columns, or `None` when there is none.

## What this package does not do

It does not parse HTTP requests, serve HTTP, manage sessions, sign tokens or
serve files, and it ships no database driver or connection pool: the
database is whatever object you pass in with an `exec_params` method.

## Running the tests

Install the `test` extra and run `pytest` in the project directory.