"""
CLI entry point for CHAPAL.

Provides a simple command-line chat session that runs every message
through the full safety pipeline.
"""

from __future__ import annotations

import asyncio
from uuid import uuid4

from chapal.agents.orchestrator import (
    ChatSubmission,
    StreamEventType,
    get_streaming_orchestrator,
)
from chapal.config import get_settings
from chapal.errors import ConversationLocked, UserRestricted
from chapal.logging import get_logger

logger = get_logger(__name__)


async def interactive_session():
    """Run an interactive chat session through the pipeline."""
    settings = get_settings()
    orchestrator = get_streaming_orchestrator()
    conversation_id = str(uuid4())
    user_id = "cli-user"

    print("\n" + "=" * 60)
    print("CHAPAL - safety-mediated chat")
    print("=" * 60)

    if not settings.has_generation_keys():
        print("\nNote: GEMINI_API_KEY is not set; generation will fail.")
    if not settings.has_auditor_keys():
        print("Note: GROQ_API_KEY is not set; semantic audit will be skipped.\n")

    print("Type 'quit' or 'exit' to end the session.")
    print("-" * 60 + "\n")

    while True:
        try:
            user_input = input("you: ").strip()

            if not user_input:
                continue

            if user_input.lower() in ["quit", "exit", "bye"]:
                print("\nGoodbye!\n")
                break

            submission = ChatSubmission(
                conversation_id=conversation_id, user_id=user_id, text=user_input
            )
            try:
                orchestrator.admit(submission)
            except (ConversationLocked, UserRestricted) as e:
                print(f"\n[locked] {e}\n")
                continue

            print("assistant: ", end="", flush=True)
            async for event in orchestrator.stream(submission):
                if event.type == StreamEventType.CHUNK:
                    print(event.data["text"], end="", flush=True)
                elif event.type == StreamEventType.RETRY:
                    print(f"\n[retrying {event.data['attempt']}/{event.data['maxAttempts']}]")
                    print("assistant: ", end="", flush=True)
                elif event.type == StreamEventType.DETECTION and event.data.get("userMessage"):
                    print(f"\n[{event.data['userMessage']}]")
                elif event.type == StreamEventType.DONE and event.data.get("isPendingReview"):
                    print(f"\n\n[held for review] {event.data['pendingMessage']}")
                elif event.type == StreamEventType.ERROR:
                    print(f"\n[error] {event.data['message']}")
            print("\n")

        except KeyboardInterrupt:
            print("\n\nGoodbye!\n")
            break
        except Exception as e:
            logger.error("session_error", error=str(e))
            print("\nSomething went wrong. Let's try again!\n")


def main():
    """Main entry point."""
    asyncio.run(interactive_session())


if __name__ == "__main__":
    main()
