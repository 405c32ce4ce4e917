"""Manual smoke test against a running ChatNest server.

    python smoke_room.py alice open-sesame "Hello from Python!"

Signs in, joins (or creates) the room for the passkey, sends one message
and prints the room as the view sees it.
"""
import asyncio
import sys

from chatnest.config import get_config
from chatnest.errors import RoomNotFoundError
from chatnest.sync import AskGptClient, HttpChatBackend, RoomView, SessionContext, WebSocketLiveFeed

BASE_URL = "http://localhost:8000"
WS_URL = "ws://localhost:8000"


async def main(username: str, passkey: str, text: str) -> None:
    session = SessionContext()
    backend = HttpChatBackend(BASE_URL, session)
    ai = AskGptClient(BASE_URL, get_config().ai.endpoint_path)
    try:
        await backend.sign_in(username)
        try:
            room = await backend.join_room(passkey)
        except RoomNotFoundError:
            room = await backend.create_room(f"{username}'s room", passkey)
        print(f"Room: {room.title} ({room.id})")

        async with RoomView(room.id, session, backend, WebSocketLiveFeed(WS_URL), ai=ai) as view:
            view.notifier.subscribe(lambda n: print(f"!! {n.title}: {n.description}"))
            view.draft = text
            outcome = await view.send()
            print(f"Send: {outcome.value}")
            await asyncio.sleep(1)
            for message in view.messages:
                print(f"[{message.author}] {message.content}")
    finally:
        await ai.aclose()
        await backend.aclose()


if __name__ == "__main__":
    if len(sys.argv) != 4:
        sys.exit(__doc__)
    asyncio.run(main(*sys.argv[1:]))
