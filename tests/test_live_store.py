import pytest
from fakes import create_direct, create_group, make_message

from messaging_toolkit.conversation_database.data_models.message import DeliveryState, MessageDraft, MessageType
from messaging_toolkit.errors import (
    DuplicateMessageId,
    EmptyMessageText,
    MessageNotFound,
    NotAMember,
    PermissionDenied,
)


async def test_append_seeds_delivery_and_read_state(directory, live_store):
    """The sender starts as sent and read, every other member as pending."""
    conversation = await create_group(directory)
    result = await live_store.append(conversation.id, "alice", MessageDraft(id="m1", text="hello"))
    message = result.message

    assert result.created
    assert message.id == "m1"
    assert set(message.delivery_status) == {"alice", "bob", "carol"}
    assert message.delivery_status["alice"].state == DeliveryState.SENT
    assert message.delivery_status["bob"].state == DeliveryState.PENDING
    assert message.delivery_status["carol"].state == DeliveryState.PENDING
    assert message.read_by == {"alice": message.create_timestamp}


async def test_append_rejects_non_member(directory, live_store):
    conversation = await create_direct(directory)
    with pytest.raises(NotAMember):
        await live_store.append(conversation.id, "mallory", MessageDraft(text="hi"))
    assert await live_store.count(conversation.id) == 0


async def test_append_rejects_blank_text(directory, live_store):
    conversation = await create_direct(directory)
    with pytest.raises(EmptyMessageText):
        await live_store.append(conversation.id, "alice", MessageDraft(text="  \x00 \n"))


async def test_append_allows_media_without_text(directory, live_store):
    conversation = await create_direct(directory)
    draft = MessageDraft(type=MessageType.IMAGE, media_url="https://cdn.example.com/cat.png")
    result = await live_store.append(conversation.id, "alice", draft)
    assert result.message.media_url == "https://cdn.example.com/cat.png"
    assert result.message.text == ""


async def test_append_keeps_line_breaks_and_trims_the_ends(directory, live_store):
    """Stored text is what the user typed, minus surrounding whitespace."""
    conversation = await create_direct(directory)
    result = await live_store.append(conversation.id, "alice", MessageDraft(text="  line one\n\tline two  \n"))
    assert result.message.text == "line one\n\tline two"


async def test_edit_keeps_line_breaks(directory, live_store):
    conversation = await create_direct(directory)
    await live_store.append(conversation.id, "alice", MessageDraft(id="m1", text="draft"))
    edited = await live_store.edit(conversation.id, "m1", "alice", "first\nsecond ")
    assert edited.text == "first\nsecond"


async def test_resend_with_same_id_is_idempotent(directory, live_store):
    """Re-sending a committed draft returns the existing record instead of inserting a second one."""
    conversation = await create_direct(directory)
    draft = MessageDraft(id="m1", text="hello")
    first = await live_store.append(conversation.id, "alice", draft)
    second = await live_store.append(conversation.id, "alice", draft)

    assert second.created is False
    assert second.message.create_timestamp == first.message.create_timestamp
    assert await live_store.count(conversation.id) == 1


async def test_reused_id_with_different_content_is_rejected(directory, live_store):
    conversation = await create_direct(directory)
    await live_store.append(conversation.id, "alice", MessageDraft(id="m1", text="hello"))
    with pytest.raises(DuplicateMessageId):
        await live_store.append(conversation.id, "alice", MessageDraft(id="m1", text="something else"))
    with pytest.raises(DuplicateMessageId):
        await live_store.append(conversation.id, "bob", MessageDraft(id="m1", text="hello"))


async def test_read_is_never_downgraded_by_delivered(directory, live_store):
    conversation = await create_direct(directory)
    await live_store.append(conversation.id, "alice", MessageDraft(id="m1", text="hello"))

    await live_store.mark_read(conversation.id, "m1", "bob")
    message = await live_store.mark_delivered(conversation.id, "m1", "bob")

    assert message.delivery_status["bob"].state == DeliveryState.READ
    assert "bob" in message.read_by


async def test_receipts_converge_regardless_of_order(directory, live_store):
    conversation = await create_group(directory)
    await live_store.append(conversation.id, "alice", MessageDraft(id="m1", text="hello"))

    await live_store.mark_delivered(conversation.id, "m1", "bob")
    await live_store.mark_read(conversation.id, "m1", "bob")
    await live_store.mark_read(conversation.id, "m1", "carol")
    await live_store.mark_delivered(conversation.id, "m1", "carol")

    message = await live_store.get(conversation.id, "m1")
    assert message.delivery_status["bob"].state == DeliveryState.READ
    assert message.delivery_status["carol"].state == DeliveryState.READ


async def test_repeated_receipt_keeps_first_timestamp(directory, live_store):
    conversation = await create_direct(directory)
    await live_store.append(conversation.id, "alice", MessageDraft(id="m1", text="hello"))

    first = await live_store.mark_read(conversation.id, "m1", "bob")
    second = await live_store.mark_read(conversation.id, "m1", "bob")

    assert second.read_by["bob"] == first.read_by["bob"]
    assert second.delivery_status["bob"] == first.delivery_status["bob"]


async def test_sender_receipt_is_a_no_op(directory, live_store):
    conversation = await create_direct(directory)
    await live_store.append(conversation.id, "alice", MessageDraft(id="m1", text="hello"))
    message = await live_store.mark_delivered(conversation.id, "m1", "alice")
    assert message.delivery_status["alice"].state == DeliveryState.SENT


async def test_receipt_errors(directory, live_store):
    conversation = await create_direct(directory)
    await live_store.append(conversation.id, "alice", MessageDraft(id="m1", text="hello"))

    with pytest.raises(MessageNotFound):
        await live_store.mark_read(conversation.id, "missing", "bob")
    with pytest.raises(NotAMember):
        await live_store.mark_delivered(conversation.id, "m1", "mallory")


async def test_observers_see_identical_deterministic_order(directory, live_store, live_db):
    """Equal timestamps are ordered by message id for every observer."""
    conversation = await create_direct(directory)
    for message_id in ["m3", "m1", "m2"]:
        await live_db.create_message(make_message(conversation.id, message_id, timestamp=1000))
    await live_db.create_message(make_message(conversation.id, "m0", timestamp=2000))

    first = await live_store.observe(conversation.id, "alice")
    second = await live_store.observe(conversation.id, "bob")
    first_window = await first.__anext__()
    second_window = await second.__anext__()

    assert [message.id for message in first_window] == ["m1", "m2", "m3", "m0"]
    assert [message.id for message in second_window] == [message.id for message in first_window]


async def test_observer_receives_latest_window_after_mutation(directory, live_store):
    conversation = await create_direct(directory)
    subscription = await live_store.observe(conversation.id, "bob")
    assert await subscription.__anext__() == []

    await live_store.append(conversation.id, "alice", MessageDraft(id="m1", text="one"))
    await live_store.append(conversation.id, "alice", MessageDraft(id="m2", text="two"))

    window = await subscription.__anext__()
    assert [message.id for message in window] == ["m1", "m2"]


async def test_observer_hides_messages_deleted_for_viewer(directory, live_store):
    conversation = await create_direct(directory)
    await live_store.append(conversation.id, "alice", MessageDraft(id="m1", text="one"))
    alice = await live_store.observe(conversation.id, "alice")
    bob = await live_store.observe(conversation.id, "bob")

    await live_store.delete_for_user(conversation.id, "m1", "bob")

    assert [message.id for message in await alice.__anext__()] == ["m1"]
    assert await bob.__anext__() == []


async def test_cancelled_subscription_stops_iterating(directory, live_store):
    conversation = await create_direct(directory)
    subscription = await live_store.observe(conversation.id, "alice")
    subscription.cancel()

    await live_store.append(conversation.id, "alice", MessageDraft(text="after cancel"))

    assert subscription.cancelled
    assert [window async for window in subscription] == []


async def test_typing_expires_without_explicit_clear(directory, live_store, clock):
    conversation = await create_direct(directory)
    await live_store.set_typing(conversation.id, "bob", True)
    assert await live_store.typing_users(conversation.id) == ["bob"]

    clock.advance(5001)

    assert await live_store.typing_users(conversation.id) == []


async def test_sweep_removes_expired_typing_and_notifies(directory, live_store, clock):
    conversation = await create_direct(directory)
    await live_store.set_typing(conversation.id, "bob", True)
    subscription = await live_store.observe_typing(conversation.id)
    assert await subscription.__anext__() == ["bob"]

    clock.advance(5001)
    affected = await live_store.sweep_typing()

    assert affected == {conversation.id}
    assert await subscription.__anext__() == []
    assert await live_store.sweep_typing() == set()


async def test_sending_clears_typing(directory, live_store):
    conversation = await create_direct(directory)
    await live_store.set_typing(conversation.id, "alice", True)
    await live_store.append(conversation.id, "alice", MessageDraft(text="done typing"))
    assert await live_store.typing_users(conversation.id) == []


async def test_typing_requires_membership(directory, live_store):
    conversation = await create_direct(directory)
    with pytest.raises(NotAMember):
        await live_store.set_typing(conversation.id, "mallory", True)


async def test_only_sender_can_edit_or_delete(directory, live_store):
    conversation = await create_direct(directory)
    await live_store.append(conversation.id, "alice", MessageDraft(id="m1", text="hello"))

    with pytest.raises(PermissionDenied):
        await live_store.edit(conversation.id, "m1", "bob", "hacked")
    with pytest.raises(PermissionDenied):
        await live_store.soft_delete(conversation.id, "m1", "bob")

    edited = await live_store.edit(conversation.id, "m1", "alice", "hello again")
    assert edited.text == "hello again"
    assert edited.is_edited
    assert edited.edited_at is not None

    deleted = await live_store.soft_delete(conversation.id, "m1", "alice")
    assert deleted.is_deleted
