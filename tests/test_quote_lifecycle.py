# tests/test_quote_lifecycle.py - Tests du moteur de cycle de vie des devis

from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from core.errors import NotFoundError, ValidationError
from db.models import Quote, QuoteFile, QuoteStatusHistory, User
from services.quote_lifecycle import (
    QuoteLifecycleEngine,
    TransitionMode,
    file_type_from_name,
)


@pytest.fixture
def owner(db_session):
    user = User(email="owner@example.com", hashed_password="x")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def engine_(db_session):
    return QuoteLifecycleEngine(db_session)


def _fields(**overrides):
    fields = {"part_name": "Support moteur", "service": "cnc_machining", "quantity": 10}
    fields.update(overrides)
    return fields


def _files(count=1):
    return [
        {"file_name": f"part{i}.STEP", "storage_key": f"uploads/file{i}", "size": 1024}
        for i in range(count)
    ]


def _count(db, model):
    return len(db.execute(select(model)).scalars().all())


def _assert_nothing_persisted(db):
    assert _count(db, Quote) == 0
    assert _count(db, QuoteFile) == 0
    assert _count(db, QuoteStatusHistory) == 0


# =====================================
# Création
# =====================================

def test_create_quote_rows(engine_, owner, db_session):
    """Un devis, N fichiers, une entrée d'historique initiale."""
    quote = engine_.create_quote(owner.id, _fields(), _files(3))

    assert quote.status == "quote_requested"
    assert quote.user_id == owner.id
    assert len(quote.files) == 3
    assert [h.status for h in quote.status_history] == ["quote_requested"]
    assert _count(db_session, Quote) == 1
    assert _count(db_session, QuoteFile) == 3
    assert _count(db_session, QuoteStatusHistory) == 1


def test_create_quote_file_metadata(engine_, owner):
    quote = engine_.create_quote(owner.id, _fields(), _files(1))

    stored = quote.files[0]
    assert stored.file_name == "part0.STEP"
    assert stored.file_path == "uploads/file0"
    assert stored.file_size == 1024
    assert stored.file_type == "step"


def test_create_quote_without_files_persists_nothing(engine_, owner, db_session):
    with pytest.raises(ValidationError) as exc_info:
        engine_.create_quote(owner.id, _fields(), [])

    assert exc_info.value.details[0]["field"] == "files"
    _assert_nothing_persisted(db_session)


@pytest.mark.parametrize("overrides", [
    {"service": "plasma_cutting"},
    {"material": "unobtainium"},
    {"quality_standard": "ultra_fine"},
    {"finish_types": ["anodized", "gold_leaf"]},
])
def test_out_of_enum_values_are_rejected(engine_, owner, db_session, overrides):
    with pytest.raises(ValidationError):
        engine_.create_quote(owner.id, _fields(**overrides), _files())
    _assert_nothing_persisted(db_session)


@pytest.mark.parametrize("overrides", [
    {"quantity": 0},
    {"quantity": -3},
    {"quantity": "10"},
    {"part_name": ""},
    {"target_price": "-5"},
])
def test_invalid_fields_are_rejected(engine_, owner, db_session, overrides):
    with pytest.raises(ValidationError):
        engine_.create_quote(owner.id, _fields(**overrides), _files())
    _assert_nothing_persisted(db_session)


def test_free_option_tags_are_kept(engine_, owner):
    quote = engine_.create_quote(
        owner.id,
        _fields(coatings=["zinc lamellaire"], heat_treatment=["trempe", "revenu"], finish_types=[]),
        _files(),
    )

    assert quote.coatings == ["zinc lamellaire"]
    assert quote.heat_treatment == ["trempe", "revenu"]
    assert quote.finish_types == []


def test_estimated_price_is_never_set(engine_, owner):
    quote = engine_.create_quote(owner.id, _fields(target_price="99.90"), _files())

    assert quote.estimated_price is None
    assert quote.target_price == Decimal("99.90")


def test_unknown_owner(engine_, db_session):
    with pytest.raises(NotFoundError):
        engine_.create_quote("missing-user", _fields(), _files())
    _assert_nothing_persisted(db_session)


def test_invalid_file_reference(engine_, owner, db_session):
    with pytest.raises(ValidationError) as exc_info:
        engine_.create_quote(owner.id, _fields(), [{"file_name": "a.step", "storage_key": " "}])

    assert exc_info.value.details[0]["field"] == "files.0.uploadURL"
    _assert_nothing_persisted(db_session)


def test_database_failure_rolls_back_everything(engine_, owner, db_session, monkeypatch):
    """Une erreur base au commit n'enregistre ni devis, ni fichiers, ni historique."""
    real_commit = db_session.commit

    def failing_commit():
        db_session.flush()
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db_session, "commit", failing_commit)

    with pytest.raises(SQLAlchemyError):
        engine_.create_quote(owner.id, _fields(), _files(2))
    _assert_nothing_persisted(db_session)

    # La session reste utilisable après le rollback
    monkeypatch.setattr(db_session, "commit", real_commit)
    quote = engine_.create_quote(owner.id, _fields(), _files())
    assert _count(db_session, Quote) == 1
    assert len(quote.files) == 1


# =====================================
# Statut et historique
# =====================================

def test_history_grows_with_each_status_update(engine_, owner, db_session):
    quote = engine_.create_quote(owner.id, _fields(), _files())
    sequence = ["quote_provided", "order_confirmed", "in_production", "quality_check"]

    for status in sequence:
        engine_.update_status(quote.id, status)

    history = engine_.get_status_history(quote.id)
    assert len(history) == len(sequence) + 1
    assert history[0].status == "quality_check"
    assert engine_.get_quote(quote.id).status == history[0].status


def test_status_update_keeps_notes(engine_, owner):
    quote = engine_.create_quote(owner.id, _fields(), _files())

    engine_.update_status(quote.id, "quote_provided", notes="Prix ferme 30 jours")

    latest = engine_.get_status_history(quote.id)[0]
    assert latest.notes == "Prix ferme 30 jours"


def test_invalid_status_is_rejected(engine_, owner):
    quote = engine_.create_quote(owner.id, _fields(), _files())

    with pytest.raises(ValidationError):
        engine_.update_status(quote.id, "lost_in_transit")

    assert len(engine_.get_status_history(quote.id)) == 1


def test_status_update_unknown_quote(engine_):
    with pytest.raises(NotFoundError):
        engine_.update_status("missing", "shipped")


def test_permissive_mode_allows_any_transition(engine_, owner):
    quote = engine_.create_quote(owner.id, _fields(), _files())

    engine_.update_status(quote.id, "delivered")
    engine_.update_status(quote.id, "quote_requested")

    assert engine_.get_quote(quote.id).status == "quote_requested"


def test_forward_mode(db_session, owner):
    engine_ = QuoteLifecycleEngine(db_session, transition_mode="forward")
    quote = engine_.create_quote(owner.id, _fields(), _files())

    engine_.update_status(quote.id, "in_production")
    with pytest.raises(ValidationError):
        engine_.update_status(quote.id, "quote_provided")
    with pytest.raises(ValidationError):
        engine_.update_status(quote.id, "in_production")

    assert engine_.get_quote(quote.id).status == "in_production"


def test_adjacent_mode(db_session, owner):
    engine_ = QuoteLifecycleEngine(db_session, transition_mode=TransitionMode.ADJACENT)
    quote = engine_.create_quote(owner.id, _fields(), _files())

    with pytest.raises(ValidationError):
        engine_.update_status(quote.id, "order_confirmed")
    engine_.update_status(quote.id, "quote_provided")
    engine_.update_status(quote.id, "order_confirmed")

    assert len(engine_.get_status_history(quote.id)) == 3


def test_unknown_transition_mode(db_session):
    with pytest.raises(ValueError):
        QuoteLifecycleEngine(db_session, transition_mode="chaotic")


def test_history_rows_are_immutable(engine_, owner, db_session):
    quote = engine_.create_quote(owner.id, _fields(), _files())
    entry = engine_.get_status_history(quote.id)[0]

    entry.status = "delivered"
    with pytest.raises(ValueError):
        db_session.flush()
    db_session.rollback()


def test_quote_owner_is_immutable(engine_, owner):
    quote = engine_.create_quote(owner.id, _fields(), _files())

    with pytest.raises(ValueError):
        quote.user_id = "someone-else"


# =====================================
# Prix et document
# =====================================

def test_update_price_does_not_touch_history(engine_, owner):
    quote = engine_.create_quote(owner.id, _fields(), _files())
    engine_.update_status(quote.id, "quote_provided")

    updated = engine_.update_price(quote.id, "1250.50")

    assert updated.final_price == Decimal("1250.50")
    assert updated.status == "quote_provided"
    assert len(engine_.get_status_history(quote.id)) == 2


@pytest.mark.parametrize("price", [0, -10, "abc", "12.345", True, "NaN"])
def test_invalid_prices(engine_, owner, price):
    quote = engine_.create_quote(owner.id, _fields(), _files())

    with pytest.raises(ValidationError):
        engine_.update_price(quote.id, price)


def test_attach_quote_document(engine_, owner):
    quote = engine_.create_quote(owner.id, _fields(), _files())

    updated = engine_.attach_quote_document(quote.id, "uploads/devis-pdf")

    assert updated.quote_document_path == "uploads/devis-pdf"
    assert len(engine_.get_status_history(quote.id)) == 1


# =====================================
# Lectures
# =====================================

def test_list_quotes_for_user(engine_, owner, db_session):
    other = User(email="other@example.com", hashed_password="x")
    db_session.add(other)
    db_session.commit()

    first = engine_.create_quote(owner.id, _fields(part_name="A"), _files())
    second = engine_.create_quote(owner.id, _fields(part_name="B"), _files())
    engine_.create_quote(other.id, _fields(part_name="C"), _files())

    mine = engine_.list_quotes_for_user(owner.id)
    assert [q.id for q in mine] == [second.id, first.id]
    assert len(engine_.list_all_quotes()) == 3


def test_find_quotes_by_object_path(engine_, owner):
    quote = engine_.create_quote(
        owner.id, _fields(technical_drawing_path="uploads/drawing"), _files()
    )
    again = engine_.create_quote(owner.id, _fields(), _files())

    assert {q.id for q in engine_.find_quotes_by_object_path("uploads/file0")} == {quote.id, again.id}
    assert [q.id for q in engine_.find_quotes_by_object_path("uploads/drawing")] == [quote.id]
    assert engine_.find_quotes_by_object_path("uploads/unrelated") == []


@pytest.mark.parametrize("name, expected", [
    ("part.STEP", "step"),
    ("archive.tar.gz", "gz"),
    ("README", ""),
    ("dir.v2/file", ""),
])
def test_file_type_from_name(name, expected):
    assert file_type_from_name(name) == expected
