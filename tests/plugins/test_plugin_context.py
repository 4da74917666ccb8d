"""Tests for the capability façade plugins receive."""

import httpx
import pytest

from conftest import group_message, private_message
from cyberbot.adapter.events import Event
from cyberbot.plugins.context import PluginContext, PluginHandle
from cyberbot.plugins.dispatcher import Dispatcher
from cyberbot.plugins.errors import ErrorKind, FaultLog
from cyberbot.plugins.scheduler import TaskPool, TaskRegistrar


@pytest.fixture
def faults():
    return FaultLog()


@pytest.fixture
def context(config, adapter, faults):
    return PluginContext(config, adapter, faults)


@pytest.fixture
def handle(context, adapter, faults):
    dispatcher = Dispatcher(adapter, faults)
    return PluginHandle("demo", context, dispatcher, TaskRegistrar("demo", TaskPool(), faults))


def test_identity_checks(context):
    master = Event(private_message("x", user_id=10001))
    admin = Event(private_message("x", user_id=10002))
    stranger = Event(private_message("x", user_id=99999))

    assert context.is_master(master) and context.is_master(10001)
    assert not context.is_master(admin)
    assert context.is_admin(admin) and context.is_admin(master)
    assert context.has_right(admin)
    assert not context.has_right(stranger)
    assert not context.has_right(True)
    assert not context.has_right({"sender": {"user_id": "10001"}})


def test_bot_uin(context):
    assert context.bot_uin == 42


@pytest.mark.asyncio
async def test_group_role_checks(context, adapter):
    adapter.responses["get_group_member_info"] = {"role": "admin"}
    assert await context.is_group_admin(1, 2)
    assert not await context.is_group_owner(1, 2)

    adapter.responses["get_group_member_info"] = {"role": "owner"}
    assert await context.is_group_admin(1, 2)
    assert await context.is_group_owner(1, 2)

    adapter.failures["get_group_member_info"] = RuntimeError("offline")
    assert not await context.is_group_admin(1, 2)
    assert not await context.is_group_owner(1, 2)


def test_links():
    assert PluginContext.get_group_avatar_link(123) == "https://p.qlogo.cn/gh/123/123/40"
    assert PluginContext.get_qq_avatar_link(456, 640) == "https://q2.qlogo.cn/headimg_dl?dst_uin=456&spec=640"


def test_message_parsing():
    raw = "[CQ:reply,id=998][CQ:at,qq=111] hello [CQ:at,qq=222][CQ:image,file=a.png,url=https://img/x.png,size=1]"

    assert PluginContext.get_message_id(raw) == "998"
    assert PluginContext.get_message_at(raw) == [111, 222]
    assert PluginContext.get_text(raw) == "hello"
    assert PluginContext.get_image_link(raw) == "https://img/x.png"
    assert PluginContext.get_image_link("plain") == ""
    assert PluginContext.get_message_id("plain") == ""


def test_misc_helpers():
    assert PluginContext.md5("abc") == "900150983cd24fb0d6963f7d28e17f72"
    values = {PluginContext.random_int(1, 2) for _ in range(200)}
    assert values == {1, 2}
    assert PluginContext.random_item(["only"]) == "only"


@pytest.mark.asyncio
async def test_get_direct_link(context, adapter):
    adapter.responses["nc_get_rkey"] = [{"rkey": "&rkey=AAA"}, {"rkey": "&rkey=BBB"}]

    url_1406 = "https://multimedia.nt.qq.com.cn/download?appid=1406&fileid=xyz&rkey=old"
    url_1407 = "https://multimedia.nt.qq.com.cn/download?appid=1407&fileid=xyz&rkey=old"

    assert await context.get_direct_link(url_1406) == (
        "https://multimedia.nt.qq.com.cn/download?appid=1406&fileid=xyz&rkey=AAA"
    )
    assert (await context.get_direct_link(url_1407)).endswith("&rkey=BBB")
    assert await context.get_direct_link("https://x/download?appid=9999&rkey=old") == ""

    adapter.responses["nc_get_rkey"] = []
    assert await context.get_direct_link(url_1406) == ""


@pytest.mark.asyncio
async def test_messaging_and_moderation(context, adapter):
    await context.send_group_message(20002, "hi")
    await context.send_private_message(10001, ["a", 1])
    await context.ban(20002, 10001, 60)
    await context.approve_group("flag-1")
    await context.reject_group("flag-2", "no")

    assert adapter.sent("send_group_msg")[0] == {
        "group_id": 20002,
        "message": [{"type": "text", "data": {"text": "hi"}}],
    }
    assert adapter.sent_texts() == ["hi", "a1"]
    assert adapter.sent("set_group_ban") == [{"group_id": 20002, "user_id": 10001, "duration": 60}]
    requests = adapter.sent("set_group_add_request")
    assert [r["approve"] for r in requests] == [True, False]


@pytest.mark.asyncio
async def test_reply_routes_to_origin(context, adapter):
    group = context.add_reply_method(Event(group_message("hey")))
    private = context.add_reply_method(Event(private_message("hey")))

    result = await group.reply("to group", quote=True)
    await private.reply("to user")

    group_call = adapter.sent("send_group_msg")[0]
    private_call = adapter.sent("send_private_msg")[0]
    assert group_call["group_id"] == 20002
    assert group_call["message"][0] == {"type": "reply", "data": {"id": "555"}}
    assert private_call["user_id"] == 10001
    assert result["message_id"] > 0
    assert hasattr(group, "kick") and not hasattr(private, "kick")


@pytest.mark.asyncio
async def test_reply_failure_returns_zero_id(context, adapter):
    adapter.failures["send_group_msg"] = RuntimeError("gateway down")
    event = context.add_reply_method(Event(group_message("hey")))

    assert await event.reply("x") == {"message_id": 0}


def test_task_event_is_blank_group_message(context):
    event = context.make_task_event()

    assert event.message_type == "group"
    assert event.group_id == 0 and event.user_id == 0
    assert event.raw_message == ""
    assert callable(event.reply)


@pytest.mark.asyncio
async def test_handle_records_facade_fault_and_reraises(handle, adapter, faults):
    adapter.failures["send_group_msg"] = RuntimeError("gateway down")

    with pytest.raises(RuntimeError):
        await handle.send_group_message(1, "x")

    records = faults.records(plugin="demo", kind=ErrorKind.FACADE_FAULT)
    assert len(records) == 1
    assert records[0].code == "send_group_message"


def test_handle_caches_wrappers(handle):
    first = handle.is_master
    second = handle.is_master

    assert first is second
    assert handle.cached_wrappers() == 1
    assert handle.config is handle._context.config

    handle.clear_cache()
    assert handle.cached_wrappers() == 0


def test_handle_sync_fault(handle, faults):
    with pytest.raises(IndexError):
        handle.random_item([])
    assert faults.count(plugin="demo", kind=ErrorKind.FACADE_FAULT) == 1


def test_handle_records_listener_registration(handle):
    handle.handle("message", lambda e: None)
    handle.cron("* * * * *", lambda: None)

    assert [s.category for s in handle.listeners] == ["message"]
    assert len(handle.tasks) == 1
    assert handle.name == "demo"
    assert handle.plugin is None


def test_handle_hides_private_attributes(handle):
    with pytest.raises(AttributeError):
        handle._manager


@pytest.mark.asyncio
async def test_http_client(context):
    async with context.http() as client:
        assert isinstance(client, httpx.AsyncClient)
        assert client.follow_redirects


def test_plugin_control_faults_are_recorded(make_manager, monkeypatch):
    manager = make_manager()
    handle = PluginHandle(
        "demo", manager.context, manager.dispatcher, TaskRegistrar("demo", manager.pool, manager.faults)
    )

    def broken_counts():
        raise RuntimeError("registry unavailable")

    monkeypatch.setattr(manager, "counts", broken_counts)

    with pytest.raises(RuntimeError):
        handle.plugin.counts()

    records = manager.faults.records(plugin="demo", kind=ErrorKind.FACADE_FAULT)
    assert [r.code for r in records] == ["plugin.counts"]
    assert handle.plugin.counts is handle.plugin.counts
    with pytest.raises(AttributeError):
        handle.plugin._manager


@pytest.mark.asyncio
async def test_plugin_reloads_itself_without_a_name(make_manager, write_unit, config, adapter):
    write_unit("selfreload", """
        from cyberbot.plugins import define_plugin

        def setup(ctx):
            async def on_message(e):
                if e.raw_message == "reload":
                    result = await ctx.plugin.reload()
                    await e.reply(str(result))
            ctx.handle("message", on_message)

        plugin = define_plugin("selfreload", setup)
    """)
    config.plugins.user = ["selfreload"]
    manager = make_manager()
    await manager.load("selfreload")
    before = manager.registry.get("selfreload")

    await adapter.dispatch(group_message("reload"))

    assert adapter.sent_texts() == ["[+] Plugin selfreload reloaded"]
    after = manager.registry.get("selfreload")
    assert after is not before
    assert after.enabled is True
    assert len(manager.dispatcher.subscriptions(plugin="selfreload")) == 1
