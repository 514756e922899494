from __future__ import annotations

import asyncio
import logging

from bridge_fakes import ScriptedTransport, json_response, refused


def _airnavx_route(results):
    def _route(method, url, body):
        if url.port != 59720:
            return refused()
        return json_response({"results": results, "total": len(results)})

    return _route


def _relay(channel, config, transport):
    from bridges.airnavx.relay import ContentRelay

    relay = ContentRelay.create(channel, config, transport=transport)
    relay.start()
    return relay


async def _settle(channel) -> None:
    for _ in range(5):
        await asyncio.sleep(0)
    await channel.drain()
    for _ in range(5):
        await asyncio.sleep(0)


def test_page_search_through_relay(config_factory) -> None:
    from bridges.airnavx.channel import MessageChannel
    from bridges.airnavx.client import BridgeClient

    cfg = config_factory(hosts=["127.0.0.1"], ports=[51798, 59720])
    transport = ScriptedTransport(_airnavx_route([{"id": "DMC-1", "title": "Engine"}]))

    async def _main():
        channel = MessageChannel()
        relay = _relay(channel, cfg, transport)
        async with BridgeClient(channel, call_timeout=5) as client:
            assert client.ready.is_set()
            envelope = await client.search("A320 engine", 1)
            pending_after = len(client.pending)
        assert not client.ready.is_set()
        await relay.stop()
        return envelope, pending_after, relay.handled

    envelope, pending_after, handled = asyncio.run(_main())
    assert envelope.success is True
    assert len(envelope.data["results"]) == 1
    assert (envelope.host, envelope.port) == ("127.0.0.1", 59720)
    assert pending_after == 0
    assert handled == 1
    assert transport.closed is True

    search_url = transport.urls[-1]
    assert "/airnavx/api/viewer/search?" in search_url
    assert "q=A320+engine" in search_url
    assert "aggregationList=ata2%2Cactype%2Ccustomization%2Cdoctypebc" in search_url
    assert "queryWithAggregation=false" in search_url


def test_failures_become_envelopes_not_exceptions(config_factory) -> None:
    from bridges.airnavx.channel import MessageChannel
    from bridges.airnavx.client import BridgeClient

    cfg = config_factory()
    transport = ScriptedTransport(refused)

    async def _main():
        channel = MessageChannel()
        relay = _relay(channel, cfg, transport)
        async with BridgeClient(channel, call_timeout=5) as client:
            detect = await client.detect(force_refresh=True)
            empty = await client.search("   ")
            fetch = await client.fetch_content("X")
            status = await client.get_status()
        await relay.stop()
        return detect, empty, fetch, status

    detect, empty, fetch, status = asyncio.run(_main())
    assert detect.success is False
    assert detect.error.startswith("ServiceUnavailable:")
    assert "59720, 51798" in detect.error
    assert detect.searched_ports == [59720, 51798]
    assert detect.as_dict()["searched_ports"] == [59720, 51798]
    assert fetch.searched_ports == [59720, 51798]
    assert empty.searched_ports is None and "searched_ports" not in empty.as_dict()
    assert empty.success is False and empty.error.startswith("InvalidArgument:")
    assert fetch.success is False and fetch.error.startswith("ServiceUnavailable:")
    assert status.success is True
    assert status.data["detected"] is False
    assert status.as_dict()["success"] is True


def test_unknown_and_missing_methods_get_error_replies(config_factory) -> None:
    from bridges.airnavx.channel import MessageChannel
    from bridges.airnavx.protocol import request_type, response_type

    cfg = config_factory()
    transport = ScriptedTransport(refused)
    replies = []

    async def _main():
        channel = MessageChannel()
        relay = _relay(channel, cfg, transport)
        channel.subscribe(lambda ev: replies.append(ev.data) if ev.data.get("type") == response_type() else None)
        channel.post({"type": request_type(), "method": "deleteEverything", "correlationId": 7})
        channel.post({"type": request_type(), "correlationId": 8, "params": {}})
        await _settle(channel)
        await relay.stop()

    asyncio.run(_main())
    by_id = {r["correlationId"]: r for r in replies}
    assert by_id[7]["error"] == "UnknownMethod: Unknown method: deleteEverything"
    assert by_id[8]["error"] == "UnknownMethod: Unknown method: <missing>"
    assert "result" not in by_id[7]
    assert transport.calls == []


def test_relay_ignores_foreign_sources_and_other_messages(config_factory) -> None:
    from bridges.airnavx.channel import MessageChannel
    from bridges.airnavx.protocol import request_type

    cfg = config_factory()
    transport = ScriptedTransport(refused)

    async def _main():
        channel = MessageChannel()
        relay = _relay(channel, cfg, transport)
        channel.post({"type": request_type(), "method": "getStatus", "correlationId": 1}, source=object())
        channel.post({"type": "SOMETHING_ELSE", "method": "getStatus", "correlationId": 2})
        channel.post({"type": request_type(), "method": "getStatus", "correlationId": "abc"})
        channel.post("plain text")
        await _settle(channel)
        await relay.stop()
        return relay.handled

    assert asyncio.run(_main()) == 0


def test_timeout_releases_pending_call_and_late_reply_is_dropped(caplog) -> None:
    from bridges.airnavx.channel import MessageChannel
    from bridges.airnavx.client import BridgeClient
    from bridges.airnavx.protocol import CallReply

    caplog.set_level(logging.WARNING, logger="airnavx.bridge.correlation")

    async def _main():
        channel = MessageChannel()
        client = BridgeClient(channel, call_timeout=0.05)
        client.start()
        envelope = await client.search("nobody listens")
        pending_after_timeout = len(client.pending)
        channel.post(CallReply(correlation_id=1, result={"data": "late"}).to_message())
        await _settle(channel)
        client.close()
        return envelope, pending_after_timeout, client.pending.late_replies

    envelope, pending_after_timeout, late = asyncio.run(_main())
    assert envelope.success is False
    assert envelope.error.startswith("Timeout: Request timeout after 0.05s")
    assert pending_after_timeout == 0
    assert late == 1
    assert any("unknown request" in rec.getMessage() for rec in caplog.records)


def test_out_of_order_replies_are_matched_by_correlation_id() -> None:
    from bridges.airnavx.channel import MessageChannel
    from bridges.airnavx.client import BridgeClient
    from bridges.airnavx.protocol import CallReply, CallRequest

    async def _main():
        channel = MessageChannel()
        seen: list[CallRequest] = []

        def _reverse_relay(event):
            request = CallRequest.from_message(event.data)
            if request is None:
                return
            seen.append(request)
            if len(seen) == 2:
                for req in reversed(seen):
                    reply = CallReply(req.correlation_id, result={"data": req.params["query"]})
                    channel.post(reply.to_message())

        channel.subscribe(_reverse_relay)
        async with BridgeClient(channel, call_timeout=5) as client:
            first, second = await asyncio.gather(client.search("first"), client.search("second"))
        return first, second, [r.correlation_id for r in seen]

    first, second, ids = asyncio.run(_main())
    assert first.data == "first"
    assert second.data == "second"
    assert ids == [1, 2]


def test_correlation_ids_are_never_reused() -> None:
    from bridges.airnavx.correlation import PendingCallTable
    from bridges.airnavx.protocol import CallReply

    table = PendingCallTable(name="t")
    sent = []

    async def _main():
        def _send(request):
            sent.append(request.correlation_id)
            asyncio.get_running_loop().call_soon(table.resolve, CallReply(request.correlation_id, result=None))

        for _ in range(3):
            await table.call(_send, "getStatus", {}, timeout=1)
        try:
            await table.call(lambda request: sent.append(request.correlation_id), "getStatus", {}, timeout=0.01)
        except Exception:  # noqa: BLE001
            pass
        await table.call(_send, "getStatus", {}, timeout=1)

    asyncio.run(_main())
    assert sent == [1, 2, 3, 4, 5]
    assert len(table) == 0


def test_remote_error_string_is_preserved() -> None:
    from bridges.airnavx.correlation import PendingCallTable, RemoteCallError
    from bridges.airnavx.protocol import CallReply

    table = PendingCallTable()

    async def _main():
        def _send(request):
            reply = CallReply(request.correlation_id, error="RequestFailed: HTTP 500: boom")
            asyncio.get_running_loop().call_soon(table.resolve, reply)

        try:
            await table.call(_send, "search", {"query": "x"}, timeout=1)
        except RemoteCallError as exc:
            return exc.to_wire()
        return None

    assert asyncio.run(_main()) == "RequestFailed: HTTP 500: boom"


def test_message_channel_delivers_private_copies() -> None:
    from bridges.airnavx.channel import MessageChannel

    async def _main():
        channel = MessageChannel()
        got = []
        channel.subscribe(lambda ev: got.append(ev.data))
        channel.subscribe(lambda ev: ev.data["items"].append("mutated"))
        message = {"items": [1]}
        channel.post(message)
        assert got == []
        await _settle(channel)
        return message, got

    message, got = asyncio.run(_main())
    assert message == {"items": [1]}
    assert got == [{"items": [1]}]


def test_custom_call_through_relay(config_factory) -> None:
    from bridges.airnavx.channel import MessageChannel
    from bridges.airnavx.client import BridgeClient

    cfg = config_factory(hosts=["127.0.0.1"], ports=[59720])

    def _route(method, url, body):
        if url.path.endswith("/api/viewer/search"):
            return json_response({})
        return json_response({"echo": body, "path": url.path, "query": url.query})

    transport = ScriptedTransport(_route)

    async def _main():
        channel = MessageChannel()
        relay = _relay(channel, cfg, transport)
        async with BridgeClient(channel, call_timeout=5) as client:
            ok = await client.custom_call("/airnavx/api/x", method="post", params={"a": "1"}, body={"k": 1})
            bad = await client.custom_call("http://evil.example/x")
        await relay.stop()
        return ok, bad

    ok, bad = asyncio.run(_main())
    assert ok.success is True
    assert ok.data == {"echo": {"k": 1}, "path": "/airnavx/api/x", "query": "a=1"}
    assert transport.calls[-1][0] == "POST"
    assert bad.success is False and bad.error.startswith("InvalidArgument:")


def test_stray_and_duplicate_replies_leave_pending_calls_untouched() -> None:
    from bridges.airnavx.correlation import PendingCallTable
    from bridges.airnavx.protocol import CallReply

    table = PendingCallTable(name="t")
    sent = []

    async def _main():
        call_a = asyncio.create_task(table.call(sent.append, "search", {"query": "a"}, timeout=5))
        call_b = asyncio.create_task(table.call(sent.append, "search", {"query": "b"}, timeout=5))
        while len(sent) < 2:
            await asyncio.sleep(0)
        id_a, id_b = (req.correlation_id for req in sent)
        assert len(table) == 2

        assert table.resolve(CallReply(id_b, result="b-result")) is True
        result_b = await call_b
        assert len(table) == 1

        assert table.resolve(CallReply(999, result="stray")) is False
        assert table.resolve(CallReply(id_b, result="duplicate")) is False
        assert len(table) == 1
        assert id_a in table and not call_a.done()

        assert table.resolve(CallReply(id_a, result="a-result")) is True
        return await call_a, result_b

    result_a, result_b = asyncio.run(_main())
    assert (result_a, result_b) == ("a-result", "b-result")
    assert len(table) == 0
    assert table.late_replies == 2
