"""
Basic Chat terminal client
Claims a username, prints the chat history and new messages, sends typed lines
"""

import asyncio
import json
import websockets
import time
from typing import Optional, Dict, Any
import argparse
import sys


def format_event(data: Dict[str, Any]) -> str:
    """Render a server event as a printable line"""
    msg_type = data.get("type")

    if msg_type == "new message":
        return format_message(data.get("message", {}))

    if msg_type == "chat history":
        messages = data.get("messages", [])
        lines = [f"📜 Chat history ({len(messages)} messages)"]
        lines.extend(format_message(message) for message in messages)
        return "\n".join(lines)

    if msg_type == "username accepted":
        return f"✅ Chatting as: {data.get('username')}"

    if msg_type == "error":
        return f"❌ Server error: {data.get('message', 'Unknown error')}"

    return f"❓ Unknown message type: {msg_type}"


def format_message(message: Dict[str, Any]) -> str:
    sent_at = time.strftime('%H:%M:%S', time.localtime(message.get("time", 0) / 1000))
    sender = message.get("username") or message.get("userID", "unknown")
    return f"📨 [{sent_at}] #{message.get('id')} {sender}: {message.get('text', '')}"


class ChatClient:
    """WebSocket chat client"""

    def __init__(self, username: str, server_url: str = "ws://localhost:8000/ws"):
        self.username = username
        self.server_url = server_url
        self.websocket = None
        self.assigned_username: Optional[str] = None
        self.running = False

    async def connect(self) -> bool:
        """Connect to WebSocket server and print the chat history"""
        try:
            self.websocket = await websockets.connect(self.server_url)
            print(f"✅ Connected to {self.server_url}")
        except (OSError, websockets.exceptions.WebSocketException) as e:
            print(f"❌ Connection failed: {e}")
            return False

        history = json.loads(await self.websocket.recv())
        print(format_event(history))
        return True

    async def claim_username(self) -> bool:
        """Claim the username; False if the server refused it"""
        if not self.websocket:
            return False

        await self.websocket.send(json.dumps({"type": "username", "username": self.username}))
        print(f"📤 Claimed username: {self.username}")

        # Other clients' messages may arrive before the reply
        while True:
            data = json.loads(await self.websocket.recv())
            print(format_event(data))
            if data.get("type") == "username accepted":
                self.assigned_username = data.get("username")
                return True
            if data.get("type") == "error":
                return False

    async def send_message(self, text: str) -> bool:
        """Send a chat message"""
        if not self.websocket:
            return False

        try:
            await self.websocket.send(json.dumps({"type": "new message", "text": text}))
            return True
        except websockets.exceptions.ConnectionClosed as e:
            print(f"❌ Send failed: {e}")
            return False

    async def listen_for_messages(self):
        """Print incoming events until the connection closes"""
        if not self.websocket:
            return

        while self.running:
            try:
                raw = await asyncio.wait_for(self.websocket.recv(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except websockets.exceptions.ConnectionClosed:
                print("🔌 Connection closed by server")
                break
            print(format_event(json.loads(raw)))

    async def disconnect(self):
        """Disconnect from server"""
        self.running = False
        if self.websocket:
            await self.websocket.close()
            print("🔌 Disconnected from server")

    async def run_interactive(self):
        """Run interactive chat session"""
        if not await self.connect():
            return

        if not await self.claim_username():
            await self.disconnect()
            return

        self.running = True
        listen_task = asyncio.create_task(self.listen_for_messages())

        try:
            print("\n🎮 Interactive mode started!")
            print("Commands: /quit, or just type your message")
            print("-" * 50)

            while self.running:
                try:
                    user_input = (await asyncio.to_thread(input, f"{self.assigned_username}> ")).strip()
                except (KeyboardInterrupt, EOFError):
                    break

                if not user_input:
                    continue
                if user_input == "/quit":
                    break
                await self.send_message(user_input)

        finally:
            self.running = False
            listen_task.cancel()
            await self.disconnect()


async def main():
    """Main function with command line interface"""
    parser = argparse.ArgumentParser(description="Basic Chat Client")
    parser.add_argument("--username", required=True, help="Username to claim")
    parser.add_argument("--server", default="ws://localhost:8000/ws", help="Server URL")

    args = parser.parse_args()

    client = ChatClient(args.username, args.server)
    await client.run_interactive()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
    except Exception as e:
        print(f"❌ Client error: {e}")
        sys.exit(1)
