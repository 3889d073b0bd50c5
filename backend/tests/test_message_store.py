from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from conftest import at, make_bid, make_project, make_user
from homebids.domain_errors import DomainError, StoreUnavailable
from homebids.models import Message, MessageRecipient
from homebids.services.aliases import AliasAssignor
from homebids.services.attachments import AttachmentUpload
from homebids.services.message_store import MessageStore

PNG = b"\x89PNG\r\n\x1a\n" + b"0" * 64
PDF = b"%PDF-1.4\n" + b"1" * 64


def _png(name: str = "photo.png") -> AttachmentUpload:
    return AttachmentUpload(file_name=name, content_type="image/png", data=PNG)


def _pdf(name: str = "quote.pdf") -> AttachmentUpload:
    return AttachmentUpload(file_name=name, content_type="application/pdf", data=PDF)


class _FlakyBlobStore:
    """Blob store wrapper failing put() for chosen file extensions."""

    def __init__(self, inner, *, fail_times: dict[str, int]):
        self.inner = inner
        self.fail_times = dict(fail_times)
        self.put_calls = []

    def put(self, path, data, content_type):
        ext = path.rsplit(".", 1)[-1]
        self.put_calls.append(path)
        if self.fail_times.get(ext, 0) > 0:
            self.fail_times[ext] -= 1
            raise StoreUnavailable("Failed to store file")
        return self.inner.put(path, data, content_type)

    def get(self, path):
        return self.inner.get(path)

    def list(self, prefix):
        return self.inner.list(prefix)

    def delete(self, path):
        return self.inner.delete(path)

    def url_for(self, path):
        return self.inner.url_for(path)


@pytest.fixture
def world(db, blob_store, broker):
    owner = make_user(db, role="homeowner")
    project = make_project(db, owner)
    x = make_user(db, name="Xavier Plumbing")
    y = make_user(db, name="Yolanda Electric")
    make_bid(db, project, x, created_at=at(0))
    make_bid(db, project, y, created_at=at(1))
    store = MessageStore(db, blob_store, broker)
    return SimpleNamespace(owner=owner, project=project, x=x, y=y, store=store)


def _ids(messages) -> list:
    return [m.id for m in messages]


def test_list_messages_only_returns_messages_viewer_sent_or_received(world) -> None:
    store, project = world.store, world.project
    from_x = store.create_individual_message(project.id, world.x.id, world.owner.id, "quote from x").message
    from_y = store.create_individual_message(project.id, world.y.id, world.owner.id, "quote from y").message
    to_x = store.create_individual_message(project.id, world.owner.id, world.x.id, "thanks x").message
    group = store.create_group_message(project.id, world.owner.id, "site visit friday").message

    assert _ids(store.list_messages(project.id, world.owner.id)) == [from_x.id, from_y.id, to_x.id, group.id]
    assert _ids(store.list_messages(project.id, world.x.id)) == [from_x.id, to_x.id, group.id]
    assert _ids(store.list_messages(project.id, world.y.id)) == [from_y.id, group.id]

    for viewer in (world.owner, world.x, world.y):
        for message in store.list_messages(project.id, viewer.id):
            assert message.sender_id == viewer.id or viewer.id in message.recipient_ids


def test_individual_message_has_exactly_one_recipient(world, db) -> None:
    result = world.store.create_individual_message(world.project.id, world.x.id, world.owner.id, "hi")

    rows = db.query(MessageRecipient).filter(MessageRecipient.message_id == result.message.id).all()
    assert [r.recipient_id for r in rows] == [world.owner.id]
    assert result.message.message_type == "individual"
    assert result.message.sender_alias == "A"


def test_group_message_fans_out_to_every_eligible_contractor(world, db) -> None:
    withdrawn = make_user(db)
    make_bid(db, world.project, withdrawn, created_at=at(2), status="withdrawn")

    result = world.store.create_group_message(world.project.id, world.owner.id, "update")

    assert sorted(result.message.recipient_ids, key=str) == sorted([world.x.id, world.y.id], key=str)
    assert result.message.sender_alias is None


def test_group_send_by_contractor_is_forbidden(world) -> None:
    with pytest.raises(DomainError, match="Only the project owner") as exc:
        world.store.create_group_message(world.project.id, world.x.id, "hello all")

    assert exc.value.code == "GROUP_SEND_FORBIDDEN"
    assert exc.value.http_status == 403


def test_group_send_without_contractors_raises_no_recipients(db, blob_store, broker) -> None:
    owner = make_user(db, role="homeowner")
    project = make_project(db, owner)
    store = MessageStore(db, blob_store, broker)

    with pytest.raises(DomainError) as exc:
        store.create_group_message(project.id, owner.id, "anyone?")

    assert exc.value.code == "NO_RECIPIENTS"
    assert exc.value.http_status == 409
    assert db.query(Message).count() == 0


@pytest.mark.parametrize(
    ("sender", "recipient"),
    [("x", "y"), ("x", "x"), ("owner", "stranger")],
)
def test_invalid_recipients_are_rejected(world, db, sender, recipient) -> None:
    people = {"owner": world.owner, "x": world.x, "y": world.y, "stranger": make_user(db)}

    with pytest.raises(DomainError) as exc:
        world.store.create_individual_message(
            world.project.id, people[sender].id, people[recipient].id, "psst"
        )

    assert exc.value.code == "INVALID_RECIPIENT"
    assert exc.value.http_status == 422


def test_blank_message_without_attachments_is_rejected(world) -> None:
    with pytest.raises(DomainError) as exc:
        world.store.create_individual_message(world.project.id, world.x.id, world.owner.id, "   ")

    assert exc.value.code == "EMPTY_MESSAGE"
    assert exc.value.http_status == 422


def test_missing_sender_is_unauthenticated(world) -> None:
    with pytest.raises(DomainError) as exc:
        world.store.create_individual_message(world.project.id, None, world.owner.id, "hi")

    assert exc.value.code == "UNAUTHENTICATED"
    assert exc.value.http_status == 401


def test_unknown_project_is_not_found(world) -> None:
    with pytest.raises(DomainError) as exc:
        world.store.list_messages(uuid4(), world.owner.id)

    assert exc.value.code == "PROJECT_NOT_FOUND"
    assert exc.value.http_status == 404


def test_message_with_two_attachments_round_trips(world, blob_store) -> None:
    sent = world.store.create_individual_message(
        world.project.id, world.x.id, world.owner.id, "see attached", [_png(), _pdf()]
    )
    assert sent.failed == ()

    listed = world.store.list_messages(world.project.id, world.owner.id)

    assert len(listed) == 1
    attachments = listed[0].attachments
    assert [a.file_name for a in attachments] == ["photo.png", "quote.pdf"]
    for attachment, data in zip(attachments, (PNG, PDF)):
        assert attachment.file_url.startswith("/files/message-attachments/")
        path = attachment.file_url.removeprefix("/files/")
        assert blob_store.get(path) == data


def test_too_many_attachments_rejected_before_upload(world, blob_store) -> None:
    files = [_png(f"photo-{i}.png") for i in range(6)]

    with pytest.raises(DomainError) as exc:
        world.store.create_individual_message(world.project.id, world.x.id, world.owner.id, "pics", files)

    assert exc.value.code == "TOO_MANY_ATTACHMENTS"
    assert blob_store.list("message-attachments") == []


def test_oversized_and_disallowed_attachments_rejected(world, blob_store) -> None:
    oversized = AttachmentUpload(file_name="scan.png", content_type="image/png", data=b"0" * (5 * 1024 * 1024 + 1))
    script = AttachmentUpload(file_name="run.sh", content_type="application/x-sh", data=b"echo")

    with pytest.raises(DomainError) as too_large:
        world.store.create_individual_message(world.project.id, world.x.id, world.owner.id, "", [_png(), oversized])
    with pytest.raises(DomainError) as bad_type:
        world.store.create_individual_message(world.project.id, world.x.id, world.owner.id, "", [script])

    assert too_large.value.code == "ATTACHMENT_TOO_LARGE"
    assert bad_type.value.code == "ATTACHMENT_TYPE_NOT_ALLOWED"
    assert blob_store.list("message-attachments") == []


def test_transient_upload_failure_is_retried_once(world, db, blob_store, broker) -> None:
    flaky = _FlakyBlobStore(blob_store, fail_times={"png": 1})
    store = MessageStore(db, flaky, broker)

    result = store.create_individual_message(world.project.id, world.x.id, world.owner.id, "", [_png()])

    assert result.failed == ()
    assert len(result.message.attachments) == 1
    assert len(flaky.put_calls) == 2


def test_failed_attachment_does_not_abort_the_batch(world, db, blob_store, broker) -> None:
    flaky = _FlakyBlobStore(blob_store, fail_times={"pdf": 5})
    store = MessageStore(db, flaky, broker)

    result = store.create_individual_message(
        world.project.id, world.x.id, world.owner.id, "two files", [_png(), _pdf()]
    )

    assert [a.file_name for a in result.message.attachments] == ["photo.png"]
    assert [f.file_name for f in result.failed] == ["quote.pdf"]


def test_nothing_left_to_send_raises_store_unavailable(world, db, blob_store, broker) -> None:
    flaky = _FlakyBlobStore(blob_store, fail_times={"png": 5})
    store = MessageStore(db, flaky, broker)

    with pytest.raises(DomainError) as exc:
        store.create_individual_message(world.project.id, world.x.id, world.owner.id, "", [_png()])

    assert exc.value.code == "STORE_UNAVAILABLE"
    assert exc.value.http_status == 503
    assert db.query(Message).count() == 0


def test_mark_read_is_idempotent(world) -> None:
    sent = world.store.create_individual_message(world.project.id, world.x.id, world.owner.id, "hi").message

    first = world.store.mark_read(sent.id, world.owner.id)
    first_read_at = first.read_at
    second = world.store.mark_read(sent.id, world.owner.id)

    assert first_read_at is not None
    assert second.read_at == first_read_at


def test_mark_read_requires_recipient(world) -> None:
    sent = world.store.create_individual_message(world.project.id, world.x.id, world.owner.id, "hi").message

    with pytest.raises(DomainError) as exc:
        world.store.mark_read(sent.id, world.y.id)

    assert exc.value.code == "MESSAGE_NOT_FOUND"


def test_subscribe_delivers_only_relevant_messages(world) -> None:
    store, project = world.store, world.project
    seen_by_x, seen_by_y = [], []
    sub_x = store.subscribe(project.id, world.x.id, seen_by_x.append)
    sub_y = store.subscribe(project.id, world.y.id, seen_by_y.append)

    to_x = store.create_individual_message(project.id, world.owner.id, world.x.id, "for x").message
    group = store.create_group_message(project.id, world.owner.id, "for all").message

    assert _ids(seen_by_x) == [to_x.id, group.id]
    assert _ids(seen_by_y) == [group.id]

    sub_x.cancel()
    sub_x.cancel()
    store.create_group_message(project.id, world.owner.id, "after cancel")

    assert len(seen_by_x) == 2
    assert len(seen_by_y) == 2
    sub_y.cancel()


def test_first_contact_by_message_assigns_alias(db, blob_store, broker) -> None:
    owner = make_user(db, role="homeowner")
    project = make_project(db, owner)
    store = MessageStore(db, blob_store, broker)
    newcomer = make_user(db)

    result = store.create_individual_message(project.id, newcomer.id, owner.id, "are you still hiring?")

    assert result.message.sender_alias == "A"
    assert store.aliases.label_for(project.id, newcomer.id) == "A"
    # With no live bids the message senders are the eligible contractors.
    assert store.eligible_contractors(project.id) == [newcomer.id]


def test_attachment_for_viewer_hides_other_threads(world) -> None:
    sent = world.store.create_individual_message(
        world.project.id, world.x.id, world.owner.id, "", [_png()]
    ).message
    path = sent.attachments[0].file_url.removeprefix("/files/")

    assert world.store.attachment_for_viewer(path, world.owner.id).file_name == "photo.png"
    assert world.store.attachment_for_viewer(path, world.x.id).file_name == "photo.png"
    with pytest.raises(DomainError) as exc:
        world.store.attachment_for_viewer(path, world.y.id)
    assert exc.value.code == "ATTACHMENT_NOT_FOUND"


def test_owner_can_reply_to_contractor_who_only_messaged(world, db) -> None:
    messenger = make_user(db)
    world.store.create_individual_message(world.project.id, messenger.id, world.owner.id, "can I quote too?")

    reply = world.store.create_individual_message(world.project.id, world.owner.id, messenger.id, "sure").message

    assert reply.recipient_ids == [messenger.id]
    # Live bids exist, so the messenger is not part of group fan-out.
    assert messenger.id not in world.store.eligible_contractors(world.project.id)


def test_owner_can_reply_to_contractor_with_rejected_bid(world, db) -> None:
    rejected = make_user(db)
    make_bid(db, world.project, rejected, created_at=at(2), status="rejected")
    world.store.create_individual_message(world.project.id, rejected.id, world.owner.id, "any chance?")

    reply = world.store.create_individual_message(world.project.id, world.owner.id, rejected.id, "not this time").message

    assert reply.recipient_ids == [rejected.id]
    thread = world.store.list_messages(world.project.id, rejected.id)
    assert [m.content for m in thread] == ["any chance?", "not this time"]


class _BrokenAssignor(AliasAssignor):
    def ensure_aliases(self, project_id):
        raise StoreUnavailable("Could not assign contractor alias")


def test_alias_failure_after_save_still_publishes(db, blob_store, broker) -> None:
    owner = make_user(db, role="homeowner")
    project = make_project(db, owner)
    newcomer = make_user(db)
    store = MessageStore(db, blob_store, broker, aliases=_BrokenAssignor(db))
    seen_by_owner = []
    subscription = store.subscribe(project.id, owner.id, seen_by_owner.append)

    result = store.create_individual_message(project.id, newcomer.id, owner.id, "are you still hiring?")

    assert result.message.sender_alias is None
    assert _ids(seen_by_owner) == [result.message.id]
    assert db.query(Message).count() == 1
    # Backfilled later by the sweep or thread repair.
    AliasAssignor(db).ensure_aliases(project.id)
    assert AliasAssignor(db).label_for(project.id, newcomer.id) == "A"
    subscription.cancel()


def test_failed_save_removes_uploaded_attachments(world, db, blob_store, monkeypatch) -> None:
    def _fail_commit():
        raise OperationalError("INSERT INTO messages", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "commit", _fail_commit)

    with pytest.raises(DomainError) as exc:
        world.store.create_individual_message(world.project.id, world.x.id, world.owner.id, "photos", [_png(), _pdf()])

    assert exc.value.code == "STORE_UNAVAILABLE"
    assert blob_store.list("message-attachments") == []
