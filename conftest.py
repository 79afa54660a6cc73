"""Shared fixtures: a fresh SQLite store per test, catalog seeding, app client.

The database is a file under ``tmp_path`` rather than ``:memory:`` so that
worker threads in the concurrency tests each get their own connection to
the same data.
"""

import pytest
from fastapi.testclient import TestClient

from bookstore.db import init_db, make_engine, make_session_factory
from bookstore.main import create_app
from bookstore.orders.models import Book, Buyer, Category


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'bookstore.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


class Seeder:
    """Writes catalog rows directly through the ORM."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _add(self, obj):
        with self.session_factory() as s, s.begin():
            s.add(obj)
        return obj

    def category(self, name: str) -> Category:
        return self._add(Category(name=name))

    def book(self, title: str, price_cents: int, stock: int, category: Category | None = None, **kw) -> Book:
        return self._add(
            Book(
                title=title,
                author=kw.pop("author", "Anon"),
                price_cents=price_cents,
                stock=stock,
                category_id=category.id if category else None,
                **kw,
            )
        )

    def buyer(self, username: str) -> Buyer:
        return self._add(Buyer(username=username, password_hash="x"))

    def stock_of(self, book_id: str) -> int:
        with self.session_factory() as s:
            return s.get(Book, book_id).stock


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
def app(engine):
    return create_app(engine=engine)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
