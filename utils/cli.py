"""CLI utility functions for user interaction."""
import sys

from agentdesk.models import ExecutionResult


def read_user_message(prompt: str = "🧑 You: ") -> str:
    """Read a message from user input via stdin."""
    print(prompt, end="", flush=True)
    line = sys.stdin.readline()
    if not line:  # EOF
        raise KeyboardInterrupt

    message = line.strip()
    if message.lower() in {"bye", "quit", "exit", "q"}:
        raise KeyboardInterrupt
    return message


def print_chunk(text: str) -> None:
    print(text, end="", flush=True)


def print_result(result: ExecutionResult, *, streamed: bool = False) -> None:
    """Print the agent's answer and a short account of how it got there."""
    if streamed:
        print()
    else:
        print(f"🤖 {result.final_text}")

    if result.tool_trace:
        print(f"\n📋 Used {len(result.tool_trace)} tool(s) in {result.iterations_used} iteration(s):")
        for i, entry in enumerate(result.tool_trace, 1):
            mark = "✅" if entry.success else "❌"
            print(f"  {i}. {mark} {entry.tool_name} ({entry.execution_time_ms} ms)")

    if result.handoff_requested:
        print(f"🙋 Handoff requested ({result.handoff_info.urgency}): {result.handoff_info.reason}")
    if result.cancelled:
        print("⚠️  Cancelled")

    usage = result.token_usage
    print(f"   tokens: {usage.total_tokens} (prompt {usage.prompt_tokens}, completion {usage.completion_tokens}), cost ${usage.cost:.6f}")
