"""Local TCP sink that checks emulator packets and acknowledges them."""

import argparse
import asyncio
import re
from typing import List, Optional, Tuple

import structlog

from .packet_encoder import PacketParser, ParsedPacket
from .models import PacketKind

logger = structlog.get_logger(__name__)

LOGIN_REPLY = "LOGIN,OK"
ACK_REPLY = "ACK"
NACK_REPLY = "NACK"


class AckServer:
    """Asyncio TCP server replying to every packet it receives."""

    # Packets may arrive coalesced or split across reads
    FRAME_PATTERN = re.compile(r'\$[^$]*?\*[0-9A-Fa-f]{2}')

    def __init__(self, host: str = "127.0.0.1", port: int = 0, reply: bool = True):
        """
        Initialize the server.

        Args:
            host: Address to bind
            port: Port to bind, 0 picks a free one
            reply: Send LOGIN,OK / ACK / NACK for each packet
        """
        self.host = host
        self.port = port
        self.reply = reply
        self.received: List[str] = []
        self.parsed: List[ParsedPacket] = []
        self.rejected = 0
        self._server: Optional[asyncio.AbstractServer] = None
        self._clients: List[asyncio.StreamWriter] = []

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle_client, self.host, self.port)
        self.port = self._server.sockets[0].getsockname()[1]
        logger.info("Ack server listening", host=self.host, port=self.port)

    async def stop(self) -> None:
        if self._server is None:
            return

        self._server.close()
        for writer in list(self._clients):
            writer.close()
        await self._server.wait_closed()
        self._server = None
        logger.info("Ack server stopped")

    async def disconnect_clients(self) -> None:
        """Close every client connection while keeping the listener open."""
        for writer in list(self._clients):
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    def split_frames(self, buffer: str) -> Tuple[List[str], str]:
        """
        Cut complete packets off the front of a text buffer.

        Returns:
            (frames, remainder)
        """
        frames = []
        end = 0
        for match in self.FRAME_PATTERN.finditer(buffer):
            frames.append(match.group(0))
            end = match.end()
        return frames, buffer[end:]

    def reply_for(self, packet: str) -> str:
        parsed = PacketParser.parse(packet)
        if parsed is None:
            self.rejected += 1
            return NACK_REPLY

        self.parsed.append(parsed)
        if parsed.kind == PacketKind.LOGIN:
            return LOGIN_REPLY
        return ACK_REPLY

    async def _handle_client(self, reader: asyncio.StreamReader,
                             writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        self._clients.append(writer)
        logger.info("Client connected", peer=peer)

        buffer = ""
        try:
            while True:
                data = await reader.read(4096)
                if not data:
                    break

                buffer += data.decode("utf-8", errors="replace")
                frames, buffer = self.split_frames(buffer)

                for frame in frames:
                    self.received.append(frame)
                    answer = self.reply_for(frame)
                    logger.info("Packet received", peer=peer, packet=frame, reply=answer)
                    if self.reply:
                        writer.write(f"{answer}\r\n".encode("utf-8"))

                if self.reply and frames:
                    await writer.drain()

        except OSError as e:
            logger.warning("Client connection error", peer=peer, error=str(e))
        finally:
            if writer in self._clients:
                self._clients.remove(writer)
            writer.close()
            logger.info("Client disconnected", peer=peer)


async def serve(host: str, port: int, reply: bool) -> None:
    server = AckServer(host, port, reply=reply)
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()


def main() -> None:
    parser = argparse.ArgumentParser(
        description='Receive emulator packets over TCP and acknowledge them'
    )

    parser.add_argument(
        '-H', '--host',
        default='0.0.0.0',
        help='Address to bind (default: 0.0.0.0)'
    )

    parser.add_argument(
        '-p', '--port',
        type=int,
        default=5001,
        help='TCP port to listen on (default: 5001)'
    )

    parser.add_argument(
        '--silent',
        action='store_true',
        help='Do not reply to packets'
    )

    args = parser.parse_args()

    try:
        asyncio.run(serve(args.host, args.port, reply=not args.silent))
    except KeyboardInterrupt:
        pass


if __name__ == '__main__':
    main()
