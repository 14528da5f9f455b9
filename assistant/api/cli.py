"""
Interactive CLI adapter for the ecosystem assistant.

Architectural role:
- Exposes terminal interaction over the same entry point as the HTTP API.
- Keeps the conversation history in process memory for the session only.
- Delegates orchestration to `assistant.api.chat.start_chat`.

Request lifecycle (per user turn):
1. Read one line from stdin.
2. Handle local control commands (`exit`/`quit`, `clear chat`/`empty chat`).
3. Append the question to history and stream fragments to stdout.
4. Append the streamed answer to history when the turn finishes with `done`.

Error handling strategy:
- Validation errors are printed and the turn is dropped from history.
- `{"error"}` fragments are printed; the failed turn is dropped from history.
- EOF and keyboard interrupts terminate the loop without traceback output.
"""

import asyncio
import sys

from dotenv import load_dotenv

load_dotenv()

from assistant.api.chat import MessageValidationError, start_chat
from assistant.api.http_api import configure_logging
from assistant.core.dependencies import get_dependencies
from assistant.core.engine import Workflow, create_workflow
from assistant.core.topics import KNOWN_TOPICS


if hasattr(sys.stdout, "reconfigure"):
    sys.stdout.reconfigure(encoding="utf-8", errors="ignore")


async def run_turn(workflow: Workflow, history: list[dict], out=sys.stdout) -> str | None:
    """Stream one turn to `out`.

    Returns:
        The full answer text on success, `None` on error.
    """
    answer: list[str] = []

    fragments = start_chat(history, workflow)
    try:
        async for fragment in fragments:
            if "content" in fragment:
                answer.append(fragment["content"])
                print(fragment["content"], end="", flush=True, file=out)
            elif "error" in fragment:
                print(f"\n[error] {fragment['error']}", file=out)
                return None
            elif fragment.get("done"):
                print(file=out)
                break
    finally:
        await fragments.aclose()

    return "".join(answer)


async def main_async() -> None:
    workflow = create_workflow(await get_dependencies())
    history: list[dict] = []

    print("Ecosystem assistant started. (Type 'exit' to quit)")
    print("Products: " + ", ".join(t.display_name for t in KNOWN_TOPICS))
    print("-" * 60)

    while True:
        try:
            question = (await asyncio.to_thread(input, "Question: ")).strip()
        except (EOFError, KeyboardInterrupt):
            print("\nShutting down.")
            break

        if not question:
            continue

        if question.lower() in ("exit", "quit"):
            print("Shutting down.")
            break

        if question.lower() in ("empty chat", "clear chat"):
            history.clear()
            print("Chat cleared.")
            continue

        history.append({"role": "user", "content": question})
        print("\nResponse:\n")

        try:
            answer = await run_turn(workflow, history)
        except MessageValidationError as err:
            print(f"[invalid input] {err}")
            answer = None

        if answer:
            history.append({"role": "assistant", "content": answer})
        else:
            history.pop()

        print("\n" + "-" * 60 + "\n")


def main():
    configure_logging()
    try:
        asyncio.run(main_async())
    except KeyboardInterrupt:
        print("\nInterrupted.")


if __name__ == "__main__":
    main()
