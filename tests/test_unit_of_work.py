import logging

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import NotSupportedError, OperationalError

from core.unit_of_work import UnitOfWork, transactions_unsupported
from models import User


class Boom(Exception):
    pass


async def count_users(session_factory):
    async with session_factory() as db:
        return await db.scalar(select(func.count(User.id)))


def unsupported_error():
    return NotSupportedError(
        "BEGIN", {}, Exception("Transaction numbers are only allowed on a replica set member or mongos")
    )


def test_transactions_unsupported_markers():
    assert transactions_unsupported(unsupported_error())
    assert transactions_unsupported(OperationalError("BEGIN", {}, Exception("standalone server")))
    assert not transactions_unsupported(OperationalError("SELECT 1", {}, Exception("disk I/O error")))


async def test_transactional_mode_rolls_back_everything(session_factory):
    with pytest.raises(Boom):
        async with UnitOfWork(session_factory) as uow:
            assert uow.transactional
            uow.session.add(User(email="first.donor@gmail.com"))
            await uow.checkpoint("first")
            uow.session.add(User(email="second.donor@gmail.com"))
            await uow.checkpoint("second")
            raise Boom()

    assert await count_users(session_factory) == 0


async def test_transactional_mode_commits_on_exit(session_factory):
    async with UnitOfWork(session_factory) as uow:
        uow.session.add(User(email="first.donor@gmail.com"))
        await uow.checkpoint("first")

    assert uow.committed_steps == []
    assert await count_users(session_factory) == 1


async def test_sequential_mode_keeps_committed_steps_and_logs(session_factory, caplog):
    caplog.set_level(logging.ERROR, logger="core.unit_of_work")

    with pytest.raises(Boom):
        async with UnitOfWork(session_factory, use_transactions=False, context={"donation_id": 7}) as uow:
            assert not uow.transactional
            uow.session.add(User(email="first.donor@gmail.com"))
            await uow.checkpoint("first")
            raise Boom()

    assert uow.committed_steps == ["first"]
    assert await count_users(session_factory) == 1
    assert "manual reconciliation required" in caplog.text
    assert "'donation_id': 7" in caplog.text


async def test_falls_back_when_transactions_unsupported(session_factory, monkeypatch, caplog):
    async def refuse(self):
        raise unsupported_error()

    monkeypatch.setattr(UnitOfWork, "_begin", refuse)
    caplog.set_level(logging.WARNING, logger="core.unit_of_work")

    async with UnitOfWork(session_factory) as uow:
        uow.session.add(User(email="first.donor@gmail.com"))
        await uow.checkpoint("first")

    assert not uow.transactional
    assert uow.committed_steps == ["first"]
    assert await count_users(session_factory) == 1
    assert "falling back to sequential writes" in caplog.text


async def test_other_begin_errors_propagate(session_factory, monkeypatch):
    async def broken(self):
        raise OperationalError("BEGIN", {}, Exception("disk I/O error"))

    monkeypatch.setattr(UnitOfWork, "_begin", broken)

    with pytest.raises(OperationalError):
        async with UnitOfWork(session_factory):
            pass
