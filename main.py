#!/usr/bin/env python3

##############################################
#                                            #
#         AGENTDESK INTERACTIVE CHAT         #
#                                            #
##############################################

import asyncio
import os
from dotenv import load_dotenv

from agentdesk.agent_config import AgentRegistry, AgentType
from agentdesk.agent_service import AgentService
from agentdesk.llm.litellm import LiteLLM
from utils.cli import print_chunk, print_result, read_user_message
from utils.load_config import load_config
from utils.observability import setup_telemetry

from utils.logger import get_logger, init_logger
logger = get_logger(__name__)


def _pick_agent(registry: AgentRegistry) -> str:
    agent_id = os.getenv("AGENT_ID")
    if agent_id:
        return agent_id
    for agent in registry:
        if agent.type is AgentType.CHATBOT and agent.is_active:
            return agent.id
    raise SystemExit("No active chatbot agent defined")


async def chat() -> None:
    config = load_config("config.json")
    if config.telemetry.enabled:
        setup_telemetry(config.telemetry.service_name, config.telemetry.target)
    registry = AgentRegistry.from_file(os.getenv("AGENTS_FILE", "agents.yaml"))
    service = AgentService(
        registry=registry,
        llm=LiteLLM(model=os.getenv("LLM_MODEL", config.llm.model)),
        runtime=config.runtime,
    )
    agent_id = _pick_agent(registry)
    user_id = os.getenv("USER_ID", "cli-user")
    conversation_id = None

    logger.info("🤖 Agent started. Type a message to get started…", agent_id=agent_id)

    while True:
        message = None
        try:
            message = await asyncio.to_thread(read_user_message)
            if not message:  # Skip empty inputs
                continue

            print("🤖 ", end="", flush=True)
            result = await service.execute_chatbot_agent_stream(
                agent_id, message, user_id, print_chunk, conversation_id=conversation_id
            )
            conversation_id = result.conversation_id
            print_result(result, streamed=True)

        except KeyboardInterrupt:
            logger.info("🤖 Bye!")
            break

        except Exception as exc:
            logger.exception("chat_failed", message=message, error=str(exc))


def main() -> None:
    init_logger("config.json")
    load_dotenv()
    asyncio.run(chat())


if __name__ == "__main__":
    main()
