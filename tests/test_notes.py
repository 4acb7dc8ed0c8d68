import pytest

from technotes import services
from technotes.errors import ConflictError, InvalidInputError, NotFoundError
from technotes.models.user import User


@pytest.fixture
def owner_id(session_local):
    services.create_user("Alice", "p@ss")
    session = session_local()
    try:
        return session.query(User).filter(User.username == "Alice").one().id
    finally:
        session.close()


def test_create_and_list_notes(owner_id):
    assert services.create_note(owner_id, "Fix printer", "Paper jam") == "New note Fix printer created"

    notes = services.list_notes()

    assert len(notes) == 1
    assert notes[0]["username"] == "Alice"
    assert notes[0]["completed"] is False
    assert notes[0]["user_id"] == owner_id


def test_list_notes_empty_is_not_found(session_local):
    with pytest.raises(NotFoundError):
        services.list_notes()


def test_create_note_for_unknown_user(session_local):
    with pytest.raises(NotFoundError):
        services.create_note(7, "Orphan", "No owner")


def test_create_note_rejects_duplicate_title(owner_id):
    services.create_note(owner_id, "Fix printer", "Paper jam")
    with pytest.raises(ConflictError):
        services.create_note(owner_id, "fix PRINTER", "Again")


def test_create_note_requires_all_fields(owner_id):
    with pytest.raises(InvalidInputError):
        services.create_note(owner_id, "", "text")


def test_update_note(owner_id):
    services.create_note(owner_id, "Fix printer", "Paper jam")
    note_id = services.list_notes()[0]["id"]

    message = services.update_note(note_id, owner_id, "Fix Printer", "Toner", True)

    assert message == "Note Fix Printer updated"
    note = services.list_notes()[0]
    assert note["text"] == "Toner"
    assert note["completed"] is True


def test_update_note_rejects_title_of_other_note(owner_id):
    services.create_note(owner_id, "First", "a")
    services.create_note(owner_id, "Second", "b")
    second = services.list_notes()[1]["id"]

    with pytest.raises(ConflictError):
        services.update_note(second, owner_id, "first", "b", False)


def test_update_missing_note(owner_id):
    with pytest.raises(NotFoundError):
        services.update_note(99, owner_id, "Title", "text", False)


def test_delete_note(owner_id):
    services.create_note(owner_id, "Fix printer", "Paper jam")
    note_id = services.list_notes()[0]["id"]

    assert services.delete_note(note_id) == f"Note Fix printer with ID {note_id} deleted"
    with pytest.raises(NotFoundError):
        services.delete_note(note_id)
