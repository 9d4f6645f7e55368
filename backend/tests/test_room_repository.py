import pytest

from watchparty.models.room import PlaybackState, RoomMetadata
from watchparty.services.room_repository import RoomRepository

pytestmark = pytest.mark.anyio


def _metadata(host_id: str = "host") -> RoomMetadata:
    return RoomMetadata(name="Movie night", host_id=host_id, max_participants=4)


async def test_key_layout(repo):
    assert repo.metadata_key("r1") == "room:r1:metadata"
    assert repo.members_key("r1") == "room:r1:members"
    assert repo.playback_key("r1") == "room:r1:playback"
    assert repo.connections_key("r1", "u1") == "room:r1:connections:u1"
    assert repo.active_rooms_key == "active_rooms"


async def test_key_prefix_is_applied(store):
    prefixed = RoomRepository(store, ttl=60, key_prefix="wp:")
    assert prefixed.metadata_key("r1") == "wp:room:r1:metadata"
    assert prefixed.active_rooms_key == "wp:active_rooms"


async def test_metadata_is_stored_with_camel_case_keys(repo, store):
    await repo.create_metadata("r1", _metadata())

    raw = await store.get("room:r1:metadata")
    assert '"hostId":"host"' in raw
    assert '"maxParticipants":4' in raw

    metadata = await repo.get_metadata("r1")
    assert metadata.host_id == "host"
    assert metadata.max_participants == 4


async def test_missing_metadata_prunes_index(repo, store, clock):
    await repo.create_metadata("r1", _metadata())
    assert await repo.get_active_rooms() == ["r1"]

    clock.advance(61)
    assert await repo.get_metadata("r1") is None
    assert await store.smembers("active_rooms") == set()


async def test_corrupt_metadata_reads_as_absent(repo, store):
    await repo.create_metadata("r1", _metadata())
    await store.set("room:r1:metadata", "not json", ttl=60)

    assert await repo.get_metadata("r1") is None
    assert await repo.get_active_rooms() == []


async def test_update_host(repo):
    await repo.create_metadata("r1", _metadata())
    assert await repo.update_host("r1", "alice") is True
    assert (await repo.get_metadata("r1")).host_id == "alice"


async def test_update_host_without_metadata(repo):
    assert await repo.update_host("gone", "alice") is False


async def test_members_keep_join_order(repo):
    await repo.create_metadata("r1", _metadata())
    for user_id in ("host", "alice", "bob"):
        await repo.add_member("r1", user_id)

    assert await repo.get_members("r1") == ["host", "alice", "bob"]
    assert await repo.get_member_count("r1") == 3

    await repo.remove_member("r1", "alice")
    assert await repo.get_members("r1") == ["host", "bob"]
    assert await repo.is_member("r1", "alice") is False


async def test_add_member_refreshes_whole_room(repo, store, clock):
    await repo.create_metadata("r1", _metadata())
    await repo.create_playback_state("r1", PlaybackState(last_updated_by="host"))
    await repo.add_member("r1", "host")

    clock.advance(50)
    await repo.add_member("r1", "alice")

    for key in ("room:r1:metadata", "room:r1:members", "room:r1:playback"):
        assert store.ttl(key) == pytest.approx(60)


async def test_update_playback_state_refreshes_ttl(repo, store, clock):
    await repo.create_metadata("r1", _metadata())
    await repo.create_playback_state("r1", PlaybackState(last_updated_by="host"))

    clock.advance(40)
    state = PlaybackState(last_updated_by="alice", current_time=12.5, is_playing=True)
    await repo.update_playback_state("r1", state)

    assert store.ttl("room:r1:metadata") == pytest.approx(60)
    stored = await repo.get_playback_state("r1")
    assert stored.current_time == 12.5
    assert stored.last_updated_by == "alice"


async def test_connection_set_is_removed_when_empty(repo, store):
    await repo.add_connection("r1", "alice", "c1")
    await repo.add_connection("r1", "alice", "c2")
    assert await repo.has_active_connections("r1", "alice") is True
    assert store.ttl("room:r1:connections:alice") == pytest.approx(60)

    await repo.remove_connection("r1", "alice", "c1")
    assert await repo.has_active_connections("r1", "alice") is True

    await repo.remove_connection("r1", "alice", "c2")
    assert await repo.has_active_connections("r1", "alice") is False
    assert await store.keys("room:r1:connections:") == []


async def test_refresh_connection_ttl(repo, store, clock):
    await repo.add_connection("r1", "alice", "c1")
    clock.advance(50)
    assert await repo.refresh_connection_ttl("r1", "alice") is True
    clock.advance(50)
    assert await repo.has_active_connections("r1", "alice") is True
    assert await repo.refresh_connection_ttl("r1", "nobody") is False


async def test_delete_room_cascades(repo, store):
    await repo.create_metadata("r1", _metadata())
    await repo.add_member("r1", "host")
    await repo.create_playback_state("r1", PlaybackState(last_updated_by="host"))
    await repo.add_connection("r1", "host", "c1")
    await repo.add_connection("r1", "alice", "c2")
    await repo.create_metadata("r2", _metadata())

    await repo.delete_room("r1")

    assert await store.keys("room:r1:") == []
    assert await repo.get_active_rooms() == ["r2"]
    assert await repo.get_metadata("r2") is not None
