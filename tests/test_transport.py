import pytest
import websockets

from proximeet.client.transport import ConnectionLost, TransportError, WebSocketTransport


async def _echo(ws):
    async for message in ws:
        await ws.send(message)


@pytest.mark.asyncio
async def test_websocket_transport_round_trip_and_clean_close():
    async with websockets.serve(_echo, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        conn = await WebSocketTransport(open_timeout=2).connect(f"ws://127.0.0.1:{port}")

        await conn.send('{"type":"ping"}')
        assert await conn.recv() == '{"type":"ping"}'

        await conn.close()
        with pytest.raises(ConnectionLost) as excinfo:
            await conn.recv()
        assert excinfo.value.clean


@pytest.mark.asyncio
async def test_refused_connection_raises_transport_error():
    with pytest.raises(TransportError):
        await WebSocketTransport(open_timeout=1).connect("ws://127.0.0.1:1")
