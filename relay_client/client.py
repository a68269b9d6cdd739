"""
Main client implementation
Handles connection with the relay server, name negotiation, message sending and receiving and graceful shutdown
"""

import asyncio
import sys
import logging
import argparse
from typing import Optional, Tuple

from relay_server.protocol import EXIT, VALID, decode_line, encode_line
from relay_server.server import DEFAULT_PORT

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1000


class Client():
    """
    Async client for communicating with the relay server

    Features:
    - Name negotiation before chatting
    - Message validation before sending messages
    - Message sender and receiver functions
    - graceful shutdown of the client
    """
    def __init__(self, host: str, port: int) -> None:
        """
        Initialize client
        Args:
            host: ip of the server to connect to
            port: port of the server to connect to
        """
        self.host = host
        self.port = port
        self.name: Optional[str] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self.reader: Optional[asyncio.StreamReader] = None

    async def connect_to_server(self) -> Tuple[Optional[asyncio.StreamReader], Optional[asyncio.StreamWriter]]:
        """Handle the connection to the chat server"""
        try:
            reader, writer = await asyncio.open_connection(
                self.host,
                self.port
            )
            logger.info(f"Connected to {self.host}:{self.port}")
            return reader, writer
        except ConnectionRefusedError:
            logger.error(f"ERROR:Server at {self.host}:{self.port} refused connection")
            print("Is the server running?")
            print("Is the port correct?")
            return None, None
        except asyncio.TimeoutError:
            logger.error(f"ERROR: Connection to {self.host}:{self.port} timed out")
            return None, None
        except OSError as e:
            logger.error(f"ERROR: OS Error: {e}")
            return None, None

    async def send_message(self, message: str) -> bool:
        """handle the sending of messages to server"""
        successful = False
        try:
            self.writer.write(encode_line(message))
            await self.writer.drain()
            successful = True
        except ConnectionResetError as e:
            logger.error(f"Connection reset: {e}")
        except BrokenPipeError as e:
            logger.error(f"Broken pipe: {e}")
        except ConnectionAbortedError as e:
            logger.error(f"Connection aborted: {e}")
        except OSError as e:
            logger.error(f"OS Error: {e}")
        return successful

    async def propose_name(self, name: str) -> Optional[bool]:
        """
        Send one proposed name and wait for the verdict.

        Returns:
            True if accepted, False if rejected, None if the server went away
        """
        if not await self.send_message(name):
            return None
        data = await self.reader.readline()
        if not data:
            return None
        accepted = decode_line(data) == VALID
        if accepted:
            self.name = name
        return accepted

    async def read_input(self) -> str:
        line = await asyncio.get_event_loop().run_in_executor(
            None, sys.stdin.readline
        )
        return line.strip()

    async def negotiate_name(self) -> bool:
        """Prompt for a pseudonym until the server accepts one"""
        print("Please enter your pseudonym:")
        while True:
            name = await self.read_input()
            if not name:
                continue
            verdict = await self.propose_name(name)
            if verdict is None:
                logger.error("Server closed the connection during the handshake")
                return False
            if verdict:
                print("You are connected")
                print("---------------------------------------")
                return True
            print("Pseudonym existed, please enter a new one:")

    def message_validation(self, msg: str) -> bool:
        """handle the validation of the message sent to the server"""
        if not msg or not msg.strip():
            return False

        if len(msg) > MAX_MESSAGE_LENGTH:
            print(f"\nError: Message too long (max {MAX_MESSAGE_LENGTH} chars)")
            return False
        return True

    async def receive_message(self):
        """Handle the receiving of messages from the server"""
        try:
            while True:
                data = await self.reader.readline()
                if not data:
                    logger.info("Server disconnected")
                    print("Error : Server closed.")
                    break
                print(f"\r{decode_line(data)}")
        except (ConnectionResetError, ConnectionAbortedError, BrokenPipeError) as e:
            logger.error(f"Connection ERROR: {e}")
        except asyncio.CancelledError:
            logger.info("Stopping receiver...")
            raise

    async def send_user_input(self):
        """Read user input and send to the server"""
        try:
            while True:
                message = await self.read_input()
                if not self.message_validation(message):
                    continue
                status = await self.send_message(message)
                if not status or message == EXIT:
                    logger.info("Client wants to close down...")
                    break
        except asyncio.CancelledError:
            logger.info("Stopping sender...")
            raise

    async def run(self):
        """Main client loop"""
        self.reader, self.writer = await self.connect_to_server()

        if self.reader is None and self.writer is None:
            logger.error("Failed to connect to the server")
            return

        try:
            if not await self.negotiate_name():
                return

            receiver_task = asyncio.create_task(self.receive_message())
            sender_task = asyncio.create_task(self.send_user_input())

            done, pending = await asyncio.wait(
                {receiver_task, sender_task},
                return_when=asyncio.FIRST_COMPLETED
            )

            for task in pending:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        finally:
            if self.writer and not self.writer.is_closing():
                self.writer.close()
                await self.writer.wait_closed()
            logger.info("Disconnected from server")


async def run_client():
    parser = argparse.ArgumentParser(description="Chat Relay Client")
    parser.add_argument('--host', default='127.0.0.1', help='Server host')
    parser.add_argument('--port', type=int, default=DEFAULT_PORT, help='Server port')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    args = parser.parse_args()
    # setup logging
    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    client = Client(host=args.host, port=args.port)
    await client.run()


def main():
    """Entry point for client"""
    try:
        asyncio.run(run_client())
    except KeyboardInterrupt:
        logger.info("Client Stopped by user")


if __name__ == "__main__":
    main()
