import asyncio
import logging
import webbrowser

from ignition import Ignition, NetworkError, RequestTimeoutError

async def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    # Connects to the default relays and loads validated bunkers
    session = await Ignition("Demo app", "https://example.com/welcome", open_url=webbrowser.open)

    for bunker in session.directory.bunkers:
        print(f"bunker {bunker.domain}: {bunker.name or '-'} ({bunker.pubkey})")

    if not session.directory.bunkers:
        print("No bunkers found (expected if the relays are unreachable)")
        await session.close()
        return

    bunker = session.directory.bunkers[0]
    username = "ignition-demo"
    try:
        if await session.check_nip05_availability(f"{username}@{bunker.domain}"):
            # create_account usually answers with an auth_url first; allow time to approve it
            pubkey = await session.create_account(bunker.pubkey, username, bunker.domain, timeout_ms=120_000)
            print("New account:", session.remote_npub(), pubkey)
            await session.connect()
            print("Connected:", session.connected)
            print("Ping:", await session.ping())
    except (NetworkError, RequestTimeoutError) as e:
        print("Signup did not complete:", e)
    finally:
        await session.close()

if __name__ == "__main__":
    asyncio.run(main())
