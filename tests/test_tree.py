import pytest

from hue_mirror.tree import MirrorObject


@pytest.mark.asyncio
async def test_settings_roundtrip(tree):
    assert await tree.get_setting("bridge_host") is None
    await tree.set_setting("bridge_host", "192.168.1.2")
    await tree.set_setting("bridge_host", "192.168.1.3")
    assert await tree.get_setting("bridge_host") == "192.168.1.3"


@pytest.mark.asyncio
async def test_upsert_keeps_existing_name(tree):
    created = await tree.upsert_object(MirrorObject(id="Lamp", type="channel", common={"name": "Lamp"}, native={"id": "1"}))
    assert created is True

    lamp = await tree.get_object("Lamp")
    lamp.common["name"] = "Reading lamp"
    await tree.set_object(lamp)

    created = await tree.upsert_object(
        MirrorObject(id="Lamp", type="channel", common={"name": "Lamp", "role": "light.color"}, native={"id": "2"})
    )
    assert created is False
    lamp = await tree.get_object("Lamp")
    assert lamp.common == {"name": "Reading lamp", "role": "light.color"}
    assert lamp.native == {"id": "2"}


@pytest.mark.asyncio
async def test_delete_recursive_keeps_siblings(tree):
    for obj_id in ("Lamp", "Lamp.bri", "Lamp2", "Lamp2.bri"):
        await tree.set_object(MirrorObject(id=obj_id, type="state"))
    await tree.set_state("Lamp.bri", 1, ack=True)
    await tree.set_state("Lamp2.bri", 2, ack=True)

    await tree.delete_recursive("Lamp")

    assert not await tree.exists("Lamp")
    assert await tree.get_state("Lamp.bri") is None
    assert await tree.exists("Lamp2")
    assert [obj.id for obj in await tree.query_by_prefix("Lamp2")] == ["Lamp2", "Lamp2.bri"]
    assert (await tree.get_state("Lamp2.bri")).val == 2


@pytest.mark.asyncio
async def test_states_by_prefix(tree):
    await tree.set_state("Lamp.on", True, ack=True)
    await tree.set_state("Lamp.xy", "0.3,0.3", ack=True)
    await tree.set_state("Lamp2.on", False, ack=True)

    states = await tree.get_states("Lamp")
    assert sorted(states) == ["Lamp.on", "Lamp.xy"]
    assert states["Lamp.xy"].val == "0.3,0.3"
    assert len(await tree.get_states()) == 3


@pytest.mark.asyncio
async def test_listeners_only_see_unconfirmed_writes(tree):
    seen = []

    async def listener(state_id, state):
        seen.append((state_id, state.val, state.ack))

    tree.subscribe(listener)
    await tree.set_state("Lamp.on", True, ack=True)
    await tree.set_state("Lamp.on", False, ack=False)
    assert seen == [("Lamp.on", False, False)]


@pytest.mark.asyncio
async def test_silent_unconfirmed_write_skips_listeners(tree):
    seen = []

    async def listener(state_id, state):
        seen.append(state_id)

    tree.subscribe(listener)
    await tree.set_state("Lamp.bri", 100, ack=False, notify=False)
    assert seen == []
    state = await tree.get_state("Lamp.bri")
    assert (state.val, state.ack) == (100, False)


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_write(tree):
    async def listener(state_id, state):
        raise RuntimeError("boom")

    tree.subscribe(listener)
    await tree.set_state("Lamp.on", True, ack=False)
    assert (await tree.get_state("Lamp.on")).val is True


@pytest.mark.asyncio
async def test_set_state_changed_skips_identical_values(tree):
    assert await tree.set_state_changed("Lamp.bri", 10, ack=True) is True
    assert await tree.set_state_changed("Lamp.bri", 10, ack=True) is False
    assert await tree.set_state_changed("Lamp.bri", 10, ack=False) is True


@pytest.mark.asyncio
async def test_enum_members_are_unique(tree):
    await tree.add_enum_member("enum.functions.color", "Lamp.sat")
    await tree.add_enum_member("enum.functions.color", "Lamp.sat")
    await tree.add_enum_member("enum.functions.color", "Living.sat")
    enum = await tree.get_object("enum.functions.color")
    assert enum.type == "enum"
    assert enum.common["members"] == ["Lamp.sat", "Living.sat"]
