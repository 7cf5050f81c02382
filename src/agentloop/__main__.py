"""
Interactive chat with a tool-calling agent.

Can be called with: python -m agentloop
Type ``stream <text>`` to stream a single reply, ``exit`` to quit.
"""

import argparse
import asyncio
import logging
import random
from datetime import datetime, timezone

from .agent import Agent
from .config import Settings
from .errors import AgentError
from .middleware import logging_middleware
from .openai_client import OpenAIChatClient

logger = logging.getLogger(__name__)

STREAM_PREFIX = "stream "


def get_weather(location: str, unit: str = "celsius") -> str:
    """Get the current weather for a location."""
    temperature = random.randint(-5, 35)
    if unit == "fahrenheit":
        temperature = round(temperature * 9 / 5 + 32)
    conditions = random.choice(["sunny", "cloudy", "rainy", "windy"])
    return f"{conditions}, {temperature} degrees {unit} in {location}"


def get_time() -> str:
    """Get the current UTC time."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def build_agent(settings: Settings) -> Agent:
    return Agent(
        OpenAIChatClient.from_settings(settings),
        name="assistant",
        instructions="You are a helpful assistant. Use the tools when they help.",
        tools=[get_weather, get_time],
        agent_middleware=[logging_middleware(logger)],
        invocation_config=settings.invocation_config(),
        agent_id="main",
    )


async def chat_loop(agent: Agent, always_stream: bool = False) -> None:
    session = await agent.new_session()
    while True:
        try:
            line = await asyncio.to_thread(input, "> ")
        except EOFError:
            break
        line = line.strip()
        if not line:
            continue
        if line in ("exit", "quit"):
            break

        stream = always_stream or line.startswith(STREAM_PREFIX)
        if line.startswith(STREAM_PREFIX):
            line = line[len(STREAM_PREFIX):]

        try:
            if stream:
                async with await agent.run_stream(line, session=session) as updates:
                    async for update in updates:
                        print(update.text, end="", flush=True)
                print()
            else:
                response = await agent.run(line, session=session)
                print(response.text)
        except AgentError as e:
            logger.error(f"Agent error: {e}")
            print(f"error: {e}")


def main():
    """Main entry point for the interactive chat."""
    parser = argparse.ArgumentParser(description="agentloop - chat with a tool-calling agent")
    parser.add_argument("--model", help="Model id (default: AGENTLOOP_MODEL or gpt-4o)")
    parser.add_argument("--base-url", help="OpenAI-compatible endpoint")
    parser.add_argument("--stream", action="store_true", help="Stream every reply")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    settings = Settings.from_env()
    if args.model:
        settings.model = args.model
    if args.base_url:
        settings.openai_base_url = args.base_url
    if args.debug:
        settings.log_level = "DEBUG"
    settings.configure_logging()

    try:
        asyncio.run(chat_loop(build_agent(settings), always_stream=args.stream))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
