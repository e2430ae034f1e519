#!/usr/bin/env python3
"""chat_session.py — chatloom session demo.

Runs two chat turns through a SessionManager, stops a third one mid-stream,
then deletes the session and undoes the deletion.

The client is selected via CHATLOOM_LLM_PROVIDER (openai | stub).
Default: stub (deterministic, no external calls).
Set CHATLOOM_TRACE_EXPORTER=stdout to print the spans of each turn.

Usage:
    python examples/chat_session.py
    CHATLOOM_LLM_PROVIDER=openai CHATLOOM_API_KEY=sk-... python examples/chat_session.py
"""

from __future__ import annotations

import asyncio

from chatloom import AppConfig, ClientFactory, SessionManager, configure_logging, configure_tracing


async def main() -> None:
    config = AppConfig.from_env()
    configure_logging(config.log_level)
    tracer = configure_tracing(config)

    # ------------------------------------------------------------------
    # 1. Build the manager around the configured completion client.
    # ------------------------------------------------------------------
    client = ClientFactory.create(config)
    print(f"Client: {ClientFactory.describe(client)}")
    manager = SessionManager(client, config=config)

    # ------------------------------------------------------------------
    # 2. Two complete turns. The reply streams into the assistant message;
    #    handle.wait() returns once it is finished or failed.
    # ------------------------------------------------------------------
    for text in ("What is a memory digest?", "And why keep one?"):
        handle = await manager.on_user_input(text)
        state = await handle.wait()
        reply = manager.current_session().messages[-1]
        print(f"> {text}\n< {reply.text}  [{state}]\n")

    # ------------------------------------------------------------------
    # 3. Stop a turn right after dispatch. The reply is not flagged as an
    #    error and ends with the stopped marker.
    # ------------------------------------------------------------------
    handle = await manager.on_user_input("Tell me a very long story.")
    manager.stop(handle.message_id)
    await handle.wait()
    stopped = manager.current_session().messages[-1]
    print(f"Stopped reply: {stopped.text!r} (is_error={stopped.is_error})")

    await manager.wait_idle()
    session = manager.current_session()
    print(f"Topic: {session.topic}, {len(session.messages)} messages")

    # ------------------------------------------------------------------
    # 4. Delete and restore within the undo window.
    # ------------------------------------------------------------------
    manager.delete_session(0)
    print(f"After delete: {len(manager.current_session().messages)} messages")
    manager.undo_delete()
    print(f"After undo:   {len(manager.current_session().messages)} messages")
    tracer.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
