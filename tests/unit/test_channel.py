"""Unit tests for the correlated message channel."""

import asyncio

import pytest

from sequencer.interfaces import RemoteActionError, RequestTimeout, ServiceUnavailable
from sequencer.logging_config import LogCapture


async def settle() -> None:
    """Give the reader task time to process fed data."""
    await asyncio.sleep(0.01)


class TestRequests:
    """Request/response correlation."""

    @pytest.mark.asyncio
    async def test_out_of_order_responses_resolve_correct_callers(self, loopback):
        channel, helper = loopback()

        first = asyncio.create_task(channel.request("executeClick", {"button": "left"}))
        second = asyncio.create_task(channel.request("getPixelColor"))
        r1 = await helper.next_request()
        r2 = await helper.next_request()

        helper.respond(r2["id"], {"color": {"r": 1, "g": 2, "b": 3}})
        helper.respond(r1["id"], "clicked")

        assert await first == "clicked"
        assert await second == {"color": {"r": 1, "g": 2, "b": 3}}
        assert r1["id"] != r2["id"]
        assert channel.pending_count == 0
        await channel.close()

    @pytest.mark.asyncio
    async def test_success_without_result_resolves_none(self, loopback):
        channel, helper = loopback()

        task = asyncio.create_task(channel.request("hideMagnifier"))
        request = await helper.next_request()
        helper.send({"id": request["id"], "success": True})

        assert await task is None
        await channel.close()

    @pytest.mark.asyncio
    async def test_error_response_raises_remote_action_error(self, loopback):
        channel, helper = loopback()

        task = asyncio.create_task(channel.request("executeClick"))
        request = await helper.next_request()
        helper.fail(request["id"], "Accessibility permission denied")

        with pytest.raises(RemoteActionError, match="Accessibility permission denied") as exc_info:
            await task
        assert exc_info.value.method == "executeClick"
        await channel.close()

    @pytest.mark.asyncio
    async def test_timeout_then_late_response_is_dropped(self, loopback):
        channel, helper = loopback()

        with pytest.raises(RequestTimeout) as exc_info:
            await channel.request("waitForPixelState", timeout_ms=20)
        assert exc_info.value.method == "waitForPixelState"
        assert channel.pending_count == 0

        request = await helper.next_request()
        helper.respond(request["id"], {"matched": True})
        await settle()

        assert channel.late_response_count == 1
        assert channel.is_running
        await channel.close()

    @pytest.mark.asyncio
    async def test_default_timeout_applies(self, loopback):
        channel, helper = loopback(default_timeout_ms=20)

        with pytest.raises(RequestTimeout):
            await channel.request("checkPermissions")
        await channel.close()

    @pytest.mark.asyncio
    async def test_wire_format(self, loopback):
        channel, helper = loopback()

        task = asyncio.create_task(channel.request("showRecorderOverlay", {"position": None}))
        request = await helper.next_request()
        helper.respond(request["id"])
        await task

        assert set(request) == {"id", "method", "params"}
        assert request["params"] == {}
        raw = helper.writer.lines[0]
        assert raw.endswith(b"\n")
        assert b" " not in raw
        await channel.close()

    @pytest.mark.asyncio
    async def test_request_without_params_omits_params(self, loopback):
        channel, helper = loopback()

        task = asyncio.create_task(channel.request("hideRecorderOverlay"))
        request = await helper.next_request()
        helper.respond(request["id"])
        await task

        assert "params" not in request
        await channel.close()

    @pytest.mark.asyncio
    async def test_traffic_is_logged_with_structured_fields(self, loopback):
        channel, helper = loopback()

        with LogCapture("sequencer.ipc") as capture:
            task = asyncio.create_task(channel.request("executeClick", {"button": "left"}))
            request = await helper.next_request()
            helper.event("overlayMoved", {"position": {"x": 1, "y": 2}})
            helper.respond(request["id"])
            await task

        sent = capture.ipc_messages(direction="send")
        assert [(e["ipc_kind"], e["ipc_method"], e["ipc_id"]) for e in sent] == [
            ("request", "executeClick", request["id"])
        ]
        received = capture.ipc_messages(direction="recv")
        assert [e["ipc_kind"] for e in received] == ["event", "response"]
        assert received[0]["ipc_event"] == "overlayMoved"
        assert received[1]["ipc_success"] is True
        await channel.close()


class TestMalformedInput:
    """Malformed helper output never breaks the channel."""

    @pytest.mark.asyncio
    async def test_malformed_lines_are_discarded(self, loopback):
        channel, helper = loopback()

        with LogCapture("sequencer.ipc.channel") as capture:
            helper.feed_raw(b"not json\n")
            helper.feed_raw(b"\xff\xfe\n")
            helper.feed_raw(b"[1, 2]\n")
            helper.feed_raw(b"\n")
            helper.feed_raw(b'{"event": 5, "data": {}}\n')
            await settle()

        assert channel.protocol_error_count == 4
        assert len(capture.messages("WARNING")) >= 4

        task = asyncio.create_task(channel.request("checkPermissions"))
        request = await helper.next_request()
        helper.respond(request["id"], {"accessibility": True, "screenRecording": True})
        assert await task == {"accessibility": True, "screenRecording": True}
        await channel.close()


class TestEvents:
    """Event fan-out to listeners."""

    @pytest.mark.asyncio
    async def test_listener_failure_is_isolated(self, loopback):
        channel, helper = loopback()
        received = []

        def broken(data):
            raise RuntimeError("listener failed")

        channel.on("mouseClicked", broken)
        channel.on("mouseClicked", received.append)

        helper.event("mouseClicked", {"position": {"x": 1, "y": 2}, "button": "left"})
        await settle()

        assert received == [{"position": {"x": 1, "y": 2}, "button": "left"}]
        await channel.close()

    @pytest.mark.asyncio
    async def test_async_listeners_are_scheduled(self, loopback):
        channel, helper = loopback()
        received = []

        async def listener(data):
            await asyncio.sleep(0)
            received.append(data["ms"])

        channel.on("timeInputCompleted", listener)
        helper.event("timeInputCompleted", {"ms": 250})
        await settle()
        await channel.wait_for_listeners()

        assert received == [250]
        await channel.close()

    @pytest.mark.asyncio
    async def test_off_removes_listener(self, loopback):
        channel, helper = loopback()
        received = []

        channel.on("overlayClosed", received.append)
        channel.off("overlayClosed", received.append)
        helper.event("overlayClosed")
        await settle()

        assert received == []
        assert channel.listener_count("overlayClosed") == 0
        await channel.close()

    @pytest.mark.asyncio
    async def test_event_without_data_delivers_empty_dict(self, loopback):
        channel, helper = loopback()
        received = []

        channel.on("overlayClosed", received.append)
        helper.send({"event": "overlayClosed"})
        await settle()

        assert received == [{}]
        await channel.close()


class TestTermination:
    """Transport closure and teardown."""

    @pytest.mark.asyncio
    async def test_eof_rejects_pending_and_emits_exit(self, loopback):
        channel, helper = loopback()
        exits = []
        channel.on("exit", exits.append)

        task = asyncio.create_task(channel.request("waitForPixelZone"))
        await helper.next_request()
        helper.close()

        with pytest.raises(ServiceUnavailable):
            await task
        await settle()

        assert exits == [{"code": None}]
        assert not channel.is_running
        with pytest.raises(ServiceUnavailable):
            await channel.request("checkPermissions")

    @pytest.mark.asyncio
    async def test_exit_code_is_reported(self, loopback):
        async def exit_status():
            return 3

        channel, helper = loopback(exit_status=exit_status)
        exits = []
        channel.on("exit", exits.append)

        helper.close()
        await settle()

        assert exits == [{"code": 3}]

    @pytest.mark.asyncio
    async def test_close_rejects_pending_requests(self, loopback):
        channel, helper = loopback()
        exits = []
        channel.on("exit", exits.append)

        task = asyncio.create_task(channel.request("executeKeypress"))
        await helper.next_request()
        await channel.close(exit_code=0)

        with pytest.raises(ServiceUnavailable, match="code 0"):
            await task
        assert exits == [{"code": 0}]
        assert helper.writer.closed

    @pytest.mark.asyncio
    async def test_write_failure_marks_channel_unavailable(self, loopback):
        channel, helper = loopback()
        helper.writer.fail_writes = True

        with pytest.raises(ServiceUnavailable):
            await channel.request("showMagnifier")

        assert not channel.is_running
        assert channel.pending_count == 0

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self, loopback):
        channel, helper = loopback()

        with pytest.raises(RuntimeError):
            channel.start()
        await channel.close()
