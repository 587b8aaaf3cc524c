import asyncio

import pytest

from filedrop.core.exceptions import TransportError
from filedrop.services.channels import ConnectionRegistry, QueueTransport
from filedrop.services.notifier import Broadcaster


def test_ids_are_unique():
    async def scenario():
        reg = ConnectionRegistry(heartbeat_interval=60)
        ids = [reg.open(QueueTransport()) for _ in range(200)]
        reg.close_all()
        return ids

    ids = asyncio.run(scenario())
    assert len(set(ids)) == 200


def test_heartbeats_only_reach_open_channels(fake_transport):
    async def scenario():
        reg = ConnectionRegistry(heartbeat_interval=0.01)
        transports = [fake_transport() for _ in range(5)]
        ids = [reg.open(t) for t in transports]
        for cid in ids[:2]:
            reg.close(cid)
        await asyncio.sleep(0.1)
        remaining = reg.count
        reg.close_all()
        return transports, remaining

    transports, remaining = asyncio.run(scenario())
    assert remaining == 3
    for t in transports[:2]:
        assert t.named("heartbeat") == []
    for t in transports[2:]:
        assert len(t.named("heartbeat")) >= 1
    assert all(t.closed == 1 for t in transports)


def test_close_is_idempotent_and_cancels_heartbeat(fake_transport):
    async def scenario():
        reg = ConnectionRegistry(heartbeat_interval=60)
        t = fake_transport()
        cid = reg.open(t)
        task = reg._channels[cid].heartbeat
        first = reg.close(cid)
        second = reg.close(cid)
        await asyncio.sleep(0.01)
        return t, task, first, second, reg.get(cid)

    t, task, first, second, after = asyncio.run(scenario())
    assert (first, second) == (True, False)
    assert task.cancelled()
    assert t.closed == 1
    assert after is None


def test_failed_write_prunes_channel(fake_transport):
    async def scenario():
        reg = ConnectionRegistry(heartbeat_interval=60)
        bad = fake_transport(fail=True)
        cid = reg.open(bad)
        delivered = reg.deliver(cid, "ping", {})
        return reg, bad, delivered

    reg, bad, delivered = asyncio.run(scenario())
    assert delivered is False
    assert reg.count == 0
    assert bad.closed == 1


def test_failed_heartbeat_prunes_channel(fake_transport):
    async def scenario():
        reg = ConnectionRegistry(heartbeat_interval=0.01)
        reg.open(fake_transport(fail=True))
        await asyncio.sleep(0.05)
        return reg.count

    assert asyncio.run(scenario()) == 0


def test_broadcast_skips_broken_channels(fake_transport):
    async def scenario():
        reg = ConnectionRegistry(heartbeat_interval=60)
        good, bad = fake_transport(), fake_transport(fail=True)
        good_id = reg.open(good)
        reg.open(bad)
        b = Broadcaster(reg)
        delivered = b.broadcast("upload", {"fileCount": 1})
        sent = b.send(good_id, "tool_result", {"ok": True})
        missing = b.send("client-0", "tool_result", {})
        remaining = reg.channel_ids()
        reg.close_all()
        return good, delivered, sent, missing, remaining, good_id

    good, delivered, sent, missing, remaining, good_id = asyncio.run(scenario())
    assert delivered == 1
    assert sent is True and missing is False
    assert remaining == [good_id]
    assert [e for e, _ in good.events] == ["upload", "tool_result"]


def test_queue_transport_stream_and_close():
    async def scenario():
        t = QueueTransport(maxsize=4)
        t.write("connected", {"clientId": "c1"})
        t.write("heartbeat", {"timestamp": "now"})
        t.close()
        return [chunk async for chunk in t.stream()]

    chunks = asyncio.run(scenario())
    assert chunks[0] == 'event: connected\ndata: {"clientId": "c1"}\n\n'
    assert chunks[1].startswith("event: heartbeat\n")
    assert len(chunks) == 2


def test_queue_transport_write_failures():
    async def scenario():
        t = QueueTransport(maxsize=1)
        t.write("a", {})
        with pytest.raises(TransportError):
            t.write("b", {})
        t.close()
        with pytest.raises(TransportError):
            t.write("c", {})

    asyncio.run(scenario())


def test_count_read_from_other_threads_during_close(fake_transport):
    from concurrent.futures import ThreadPoolExecutor

    async def scenario():
        reg = ConnectionRegistry(heartbeat_interval=60)
        ids = [reg.open(fake_transport()) for _ in range(50)]
        with ThreadPoolExecutor(max_workers=4) as pool:
            reads = [pool.submit(lambda: reg.count) for _ in range(50)]
            closed = [reg.close(cid) for cid in ids]
            counts = [f.result() for f in reads]
        return reg.count, counts, closed

    final, counts, closed = asyncio.run(scenario())
    assert final == 0
    assert all(0 <= c <= 50 for c in counts)
    assert all(closed)
