"""Tests for favorite/pinned cascades."""
import pytest

from tagtree_mcp.exceptions import (
    CascadeError,
    ErrorCode,
    PersistenceError,
    TagNotFoundError,
)
from tagtree_mcp.models.schema import TagRecord
from tagtree_mcp.services.propagation import AttributePropagator
from tagtree_mcp.services.sync_bus import Topic
from tagtree_mcp.storage.tag_store import SqlTagStore
from tests.fakes import FakeTagStore


def family():
    return [
        TagRecord(id="p", name="Parent", is_parent=True, sort_order=0),
        TagRecord(id="c1", name="First", parent_id="p", is_parent=True, sort_order=1),
        TagRecord(id="c2", name="Second", parent_id="p", sort_order=2),
        TagRecord(id="g", name="Grandchild", parent_id="c1", sort_order=3),
        TagRecord(id="x", name="Other", sort_order=4),
    ]


def by_id(store):
    return {t.id: t for t in store.get_tags()}


@pytest.fixture
def fake(bus):
    return FakeTagStore(bus, family())


class TestToggleFavorite:
    """Cascade of is_favorite."""

    @pytest.mark.anyio
    async def test_parent_cascades_to_direct_children(self, fake, bus, recorded):
        propagator = AttributePropagator(fake, bus)
        assert await propagator.toggle_favorite(by_id(fake)["p"]) is True

        tags = by_id(fake)
        assert tags["p"].is_favorite and tags["c1"].is_favorite and tags["c2"].is_favorite
        assert tags["g"].is_favorite is False
        assert tags["x"].is_favorite is False
        last = recorded[Topic.FAVORITE_TAGS_UPDATED][-1]
        assert set(last.favorite_tags) == {"Parent", "First", "Second"}

    @pytest.mark.anyio
    async def test_toggle_again_reverses_everything(self, fake, bus, recorded):
        propagator = AttributePropagator(fake, bus)
        await propagator.toggle_favorite(by_id(fake)["p"])
        assert await propagator.toggle_favorite(by_id(fake)["p"]) is False

        assert not any(t.is_favorite for t in fake.get_tags())
        assert recorded[Topic.FAVORITE_TAGS_UPDATED][-1].favorite_tags == []

    @pytest.mark.anyio
    async def test_leaf_does_not_touch_others(self, fake, bus):
        propagator = AttributePropagator(fake, bus)
        await propagator.toggle_favorite(by_id(fake)["c2"])
        assert [t.id for t in fake.get_tags() if t.is_favorite] == ["c2"]
        assert fake.calls == [("update_tag", "c2")]

    @pytest.mark.anyio
    async def test_children_take_parent_value_not_their_own_flip(self, bus):
        records = family()
        records[2] = records[2].model_copy(update={"is_favorite": True})
        store = FakeTagStore(bus, records)
        propagator = AttributePropagator(store, bus)
        await propagator.toggle_favorite(by_id(store)["p"])
        assert by_id(store)["c2"].is_favorite is True

    @pytest.mark.anyio
    async def test_partial_failure_reports_progress(self, fake, bus, recorded):
        fake.fail_update_ids = {"c2"}
        propagator = AttributePropagator(fake, bus)

        with pytest.raises(CascadeError) as exc_info:
            await propagator.toggle_favorite(by_id(fake)["p"])

        error = exc_info.value
        assert error.code == ErrorCode.CASCADE_PARTIAL
        assert error.updated_ids == ["p", "c1"]
        assert error.failed_ids == ["c2"]
        tags = by_id(fake)
        assert tags["p"].is_favorite and tags["c1"].is_favorite
        assert tags["c2"].is_favorite is False
        # The mirror still matches the booleans after the failure
        assert set(recorded[Topic.FAVORITE_TAGS_UPDATED][-1].favorite_tags) == {"Parent", "First"}

    @pytest.mark.anyio
    async def test_mirror_failure_keeps_cascade_error(self, fake, bus):
        class BrokenMirror:
            def rebuild(self, records):
                raise PersistenceError("Failed to rebuild favorite tags")

        fake.fail_update_ids = {"c2"}
        propagator = AttributePropagator(fake, bus, favorites=BrokenMirror())

        with pytest.raises(CascadeError) as exc_info:
            await propagator.toggle_favorite(by_id(fake)["p"])

        assert exc_info.value.updated_ids == ["p", "c1"]
        assert exc_info.value.failed_ids == ["c2"]

    @pytest.mark.anyio
    async def test_no_retry_after_failure(self, fake, bus):
        fake.fail_update_ids = {"c1"}
        propagator = AttributePropagator(fake, bus)
        with pytest.raises(CascadeError):
            await propagator.toggle_favorite(by_id(fake)["p"])
        assert fake.calls.count(("update_tag", "c1")) == 1
        assert ("update_tag", "c2") not in fake.calls

    @pytest.mark.anyio
    async def test_missing_tag_raises_not_found(self, fake, bus):
        propagator = AttributePropagator(fake, bus)
        ghost = TagRecord(id="ghost", name="Ghost")
        with pytest.raises(TagNotFoundError):
            await propagator.toggle_favorite(ghost)


class TestTogglePinned:
    """Cascade of is_pinned."""

    @pytest.mark.anyio
    async def test_parent_cascades(self, fake, bus, recorded):
        propagator = AttributePropagator(fake, bus)
        assert await propagator.toggle_pinned(by_id(fake)["p"]) is True
        assert [t.id for t in fake.get_tags() if t.is_pinned] == ["p", "c1", "c2"]
        assert recorded[Topic.FAVORITE_TAGS_UPDATED] == []

    @pytest.mark.anyio
    async def test_partial_failure(self, fake, bus):
        fake.fail_update_ids = {"c1"}
        propagator = AttributePropagator(fake, bus)
        with pytest.raises(CascadeError) as exc_info:
            await propagator.toggle_pinned(by_id(fake)["p"])
        assert exc_info.value.attribute == "is_pinned"
        assert exc_info.value.updated_ids == ["p"]


class TestFavoritesMirror:
    """The persisted favorites table follows the booleans."""

    @pytest.mark.anyio
    async def test_mirror_matches_after_toggles(self, tag_repository, favorites_repository, bus):
        store = SqlTagStore(tag_repository, bus)
        for name in ("Parent", "First", "Second"):
            await store.add_tag({"name": name, "is_parent": name == "Parent"})
        tags = {t.name: t for t in store.get_tags()}
        for name in ("First", "Second"):
            await store.update_tag(tags[name].id, {"parent_id": tags["Parent"].id})

        propagator = AttributePropagator(store, bus, favorites_repository)
        await propagator.toggle_favorite(store.find_by_name("Parent"))
        assert set(favorites_repository.get_all()) == {"Parent", "First", "Second"}

        await propagator.toggle_favorite(store.find_by_name("Parent"))
        assert favorites_repository.get_all() == []
