from __future__ import annotations
import dataclasses
from typing import Dict


@dataclasses.dataclass
class LLM:
    model: str = "gpt-4o-mini"


@dataclasses.dataclass
class Summarization:
    messages_since_summary: int = 15
    min_messages_without_summary: int = 20


@dataclasses.dataclass
class Runtime:
    max_iterations: int = 5
    context_max_tokens: int = 4000
    summarization: Summarization = dataclasses.field(default_factory=Summarization)


@dataclasses.dataclass
class LoggingConsole:
    enabled: bool = True
    renderer: str = "pretty"


@dataclasses.dataclass
class LoggingRotation:
    enabled: bool = True
    max_bytes: int = 10_000_000
    backup_count: int = 5


@dataclasses.dataclass
class LoggingFile:
    enabled: bool = False
    level: str = "DEBUG"
    path: str = "logs/app.log"
    rotation: LoggingRotation = dataclasses.field(default_factory=LoggingRotation)


@dataclasses.dataclass
class Logging:
    level: str = "INFO"
    console: LoggingConsole = dataclasses.field(default_factory=LoggingConsole)
    file: LoggingFile = dataclasses.field(default_factory=LoggingFile)
    libraries: Dict[str, str] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass
class Telemetry:
    enabled: bool = False
    target: str = "otel"
    service_name: str = "agentdesk"


@dataclasses.dataclass
class Config:
    llm: LLM = dataclasses.field(default_factory=LLM)
    runtime: Runtime = dataclasses.field(default_factory=Runtime)
    logging: Logging = dataclasses.field(default_factory=Logging)
    telemetry: Telemetry = dataclasses.field(default_factory=Telemetry)
