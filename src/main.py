"""CLI SMS simulator for the support agent.

Plays the customer's side of an SMS thread in the terminal.  Every line you
type goes through the same interaction loop the webhook uses.  For
production, use the FastAPI server (src/server.py).

Usage:
    uv run python -m src.main --name Sam --phone-model "iPhone 13" --issue "cracked screen"
    uv run python -m src.main --debug    # debug mode (shows API calls)
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from dotenv import load_dotenv

from src.agent import create_interaction_loop, generate_first_contact_message
from src.models import CustomerContext
from src.services.appointment_client import close_appointment_client

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("src").setLevel(logging.DEBUG if debug else logging.INFO)


async def _chat(customer: CustomerContext, instructions: list[str], first_contact: bool) -> None:
    loop = create_interaction_loop()

    if first_contact:
        opening = await generate_first_contact_message(customer)
        print(f"\nShop: {opening}\n")

    try:
        while True:
            try:
                user_input = (await asyncio.to_thread(input, "You: ")).strip()
            except (KeyboardInterrupt, EOFError):
                print("\n\nGoodbye!")
                break

            if not user_input:
                continue
            if user_input.lower() in ("exit", "quit", "q"):
                print("\nGoodbye!")
                break

            result = await loop.run_interaction(user_input, customer, instructions)
            print(f"\nShop: {result.content}\n")
            if result.tool_result is not None:
                logger.info("Tool result: %s", result.tool_result)
            if result.conversation_closed:
                print(">> The agent closed this conversation.\n")
                break
    finally:
        await close_appointment_client()


def main():
    """Run the interactive SMS simulator."""
    parser = argparse.ArgumentParser(description="SMS support agent simulator")
    parser.add_argument("--phone", default="+15555550100", help="Customer phone number")
    parser.add_argument("--name", help="Customer name")
    parser.add_argument("--phone-model", help="Device to repair")
    parser.add_argument("--issue", help="Reported issue")
    parser.add_argument(
        "--instruction", action="append", default=[],
        help="Conversation instruction for the agent (repeatable)",
    )
    parser.add_argument(
        "--first-contact", action="store_true",
        help="Start with the shop's first-contact message",
    )
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    customer = CustomerContext(
        phone_number=args.phone,
        name=args.name,
        phone_model=args.phone_model,
        issue=args.issue,
    )

    print("\n" + "=" * 60)
    print("  SMS Support Agent - Simulator")
    print("=" * 60)
    print(f"  Texting as {customer.phone_number}. Type 'quit' to exit.")
    print("=" * 60 + "\n")

    try:
        asyncio.run(_chat(customer, args.instruction, args.first_contact))
    except KeyboardInterrupt:
        print("\n\nGoodbye!")


if __name__ == "__main__":
    main()
