from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError

from expense_tracker import crud, rpc


def _refuse_session():
    raise AssertionError("the datastore must not be touched")


def test_all_procedures_are_registered():
    assert set(rpc.PROCEDURES) == {
        "healthcheck",
        "createCategory",
        "getCategories",
        "updateCategory",
        "deleteCategory",
        "createExpense",
        "getExpenses",
        "updateExpense",
        "deleteExpense",
    }
    kinds = {name: proc.kind for name, proc in rpc.PROCEDURES.items()}
    assert kinds["getExpenses"] == "query"
    assert kinds["deleteExpense"] == "mutation"


def test_invalid_input_is_rejected_before_opening_a_session():
    proc = rpc.resolve("createExpense")
    with pytest.raises(rpc.RPCError) as excinfo:
        rpc.call(proc, _refuse_session, {"amount": 0, "description": "x", "date": "2024-01-15", "category_id": 1})
    assert excinfo.value.code == "BAD_REQUEST"
    assert excinfo.value.details


def test_healthcheck_needs_no_session():
    data = rpc.call(rpc.resolve("healthcheck", "GET"), _refuse_session)
    assert data["status"] == "ok"


def test_call_commits_each_procedure(session_factory):
    category = rpc.call(rpc.resolve("createCategory"), session_factory, {"name": "Food"})
    listed = rpc.call(rpc.resolve("getCategories", "GET"), session_factory)
    assert listed == [category]


def test_failed_call_rolls_back(session_factory):
    food = rpc.call(rpc.resolve("createCategory"), session_factory, {"name": "Food"})
    rpc.call(
        rpc.resolve("createExpense"),
        session_factory,
        {"amount": 2, "description": "Tea", "date": "2024-01-15", "category_id": food["id"]},
    )
    with pytest.raises(rpc.RPCError) as excinfo:
        rpc.call(rpc.resolve("deleteCategory"), session_factory, food["id"])
    assert excinfo.value.code == "CONFLICT"
    assert rpc.call(rpc.resolve("getCategories"), session_factory) == [food]


def test_resolve_errors():
    with pytest.raises(rpc.RPCError) as unknown:
        rpc.resolve("nope")
    assert unknown.value.status == 404

    with pytest.raises(rpc.RPCError) as method:
        rpc.resolve("deleteExpense", "GET")
    assert method.value.status == 405


def test_classify_maps_error_kinds():
    assert rpc.classify(crud.EntityNotFoundError("gone"), "p").code == "NOT_FOUND"
    assert rpc.classify(crud.EntityConflictError("busy"), "p").code == "CONFLICT"
    integrity = IntegrityError("INSERT", {}, Exception("fk"))
    assert rpc.classify(integrity, "p").code == "INTERNAL_SERVER_ERROR"
    unexpected = rpc.classify(OSError("disk on fire"), "p")
    assert unexpected.code == "INTERNAL_SERVER_ERROR"
    assert unexpected.message == "OSError: disk on fire"


def test_error_payload_round_trip():
    error = rpc.RPCError("NOT_FOUND", "Expense with id 999 not found", procedure="deleteExpense")
    restored = rpc.RPCError.from_payload(error.to_payload())
    assert (restored.code, restored.message, restored.procedure) == (
        "NOT_FOUND",
        "Expense with id 999 not found",
        "deleteExpense",
    )
