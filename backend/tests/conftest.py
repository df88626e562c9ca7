"""Pytest configuration and shared fixtures for all tests."""

import itertools
import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest

from app.referral.models import Referral
from app.referral.service import referral_service
from app.storage.db import db
from app.users.models import User


@pytest.fixture(autouse=True)
def database():
    """Fresh schema for every test."""
    db.create_tables()
    yield db
    db.drop_tables()


@pytest.fixture
def make_user():
    """Factory inserting a user with a wallet and referral code."""
    counter = itertools.count(1)

    def _make(full_name: str | None = None, referral_code: str | None = None) -> User:
        n = next(counter)
        with db.session() as session:
            user = User(
                full_name=full_name or f"User {n}",
                email=f"user{n}@example.com",
                gender="female",
                phone="+16502530000",
                country="US",
                wallet_address=f"0xwallet{n:04d}",
                referral_code=referral_code or f"CODE{n:04d}",
                agree_to_terms=True,
                total_commission=0.0,
            )
            session.add(user)
            session.flush()
            return user

    return _make


@pytest.fixture
def make_chain(make_user):
    """Factory for a straight chain: users[0] referred users[1], who referred users[2], ...

    Returns the users and the edges, edges[i] being users[i] -> users[i + 1].
    """

    def _make(length: int) -> tuple[list[User], list[Referral]]:
        users = [make_user() for _ in range(length)]
        edges = [
            referral_service.create_referral(parent.id, child.id, parent.referral_code)
            for parent, child in zip(users, users[1:])
        ]
        return users, edges

    return _make


@pytest.fixture
def load_edge():
    """Re-read an edge from the database."""

    def _load(referral_id: int) -> Referral | None:
        with db.session() as session:
            return session.get(Referral, referral_id)

    return _load
