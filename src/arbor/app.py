"""Application bootstrap helpers for the Arbor console editor."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from types import UnionType
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, TextIO, Union, get_args, get_origin, get_type_hints

from .ai.client import AIClient, ClientSettings
from .ai.context import ContextAssembler
from .ai.gateway import OpenAIAssistantGateway
from .ai.generation import OpenAITextGenerator
from .ai.orchestration.dispatcher import CommandDispatcher
from .ai.orchestration.orchestrator import ConversationOrchestrator
from .ai.orchestration.protocols import Confirmer, GenerationOptions
from .chat.history import HistoryLedger
from .documents.tree_store import InMemoryTreeStore
from .services.research import WebResearchClient
from .services.settings import Settings, SettingsStore, redact_secret
from .ui.autosave import AutoSaveTask
from .ui.console import ConsoleConfirmer, ConsoleSession
from .ui.events import Event, EventBus
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    """Wired-up engine and collaborators for one application session."""

    settings: Settings
    store: InMemoryTreeStore
    orchestrator: ConversationOrchestrator
    client: AIClient
    researcher: WebResearchClient
    events: EventBus[Event]
    autosave: AutoSaveTask | None = None
    closers: list[Any] = field(default_factory=list)


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Send application logs to the rotating log file, and to stderr for warnings."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Read settings from ``path`` (or the default location), using defaults if that fails."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except Exception as exc:  # pragma: no cover
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def load_document(path: Path | None) -> InMemoryTreeStore:
    """Open the tree document at ``path``, starting empty when it does not exist yet."""

    if path is None or not path.exists():
        return InMemoryTreeStore()
    store = InMemoryTreeStore.load(path)
    _LOGGER.info("Loaded %s node(s) from %s", len(store), path)
    return store


def build_runtime(
    settings: Settings,
    *,
    store: InMemoryTreeStore | None = None,
    confirmer: Confirmer | None = None,
    client: AIClient | None = None,
    researcher: WebResearchClient | None = None,
    debug_logging: bool = False,
) -> Runtime:
    """Construct the conversation engine from ``settings``."""

    ai_client = client or AIClient(_client_settings(settings, debug_logging=debug_logging))
    research_client = researcher or WebResearchClient(
        endpoint=settings.research_endpoint,
        max_results=settings.research_max_results,
        timeout=settings.research_timeout,
    )
    document = store if store is not None else InMemoryTreeStore()
    events: EventBus[Event] = EventBus()
    ledger = HistoryLedger(capacity=settings.history_capacity, max_text_length=settings.max_message_length)
    assembler = ContextAssembler(document, ledger, history_turns=settings.context_history_turns)
    dispatcher = CommandDispatcher(
        document,
        generator=OpenAITextGenerator(ai_client),
        researcher=research_client,
        confirmer=confirmer,
        generation_options=GenerationOptions(
            temperature=settings.generation_temperature,
            max_tokens=settings.generation_max_tokens,
        ),
        max_follow_up_length=settings.max_message_length,
    )
    orchestrator = ConversationOrchestrator(
        OpenAIAssistantGateway(ai_client, temperature=settings.temperature),
        dispatcher,
        assembler,
        ledger,
        max_message_length=settings.max_message_length,
        max_research_follow_ups=settings.max_research_follow_ups,
        event_bus=events,
    )
    autosave = None
    if settings.document_path and settings.autosave_interval > 0:
        autosave = AutoSaveTask(
            document,
            Path(settings.document_path).expanduser(),
            interval=settings.autosave_interval,
            event_bus=events,
        )
    return Runtime(
        settings=settings,
        store=document,
        orchestrator=orchestrator,
        client=ai_client,
        researcher=research_client,
        events=events,
        autosave=autosave,
        closers=[ai_client, research_client],
    )


async def run_console(runtime: Runtime) -> None:
    """Drive an interactive console session until the user quits."""

    autosave = runtime.autosave
    session = ConsoleSession(
        runtime.orchestrator,
        runtime.store,
        save=autosave.save_now if autosave is not None else None,
    )
    if autosave is not None:
        autosave.start()
    try:
        await session.run()
    finally:
        if autosave is not None:
            await autosave.stop(flush=True)
        await _shutdown(runtime)


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `arbor` console script."""

    args = _parse_cli_args(argv)
    debug = _env_flag("ARBOR_DEBUG", default=False)
    configure_logging(debug)

    try:
        overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc
    if args.document:
        overrides["document_path"] = str(Path(args.document).expanduser())

    raw_path = args.settings_path or os.environ.get("ARBOR_SETTINGS_PATH")
    settings_store = SettingsStore(Path(raw_path).expanduser() if raw_path else None)
    settings = load_settings(store=settings_store, overrides=overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=overrides)
        return

    if settings.debug_logging and not debug:
        debug = True
        configure_logging(debug, force=True)

    document_path = Path(settings.document_path).expanduser() if settings.document_path else None
    try:
        store = load_document(document_path)
    except (OSError, ValueError) as exc:
        print(f"Unable to open document {document_path}: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    runtime = build_runtime(
        settings,
        store=store,
        confirmer=ConsoleConfirmer(),
        debug_logging=debug,
    )
    try:
        asyncio.run(run_console(runtime))
    except KeyboardInterrupt:  # pragma: no cover
        _LOGGER.info("Interrupted; closing session.")


def _client_settings(settings: Settings, *, debug_logging: bool = False) -> ClientSettings:
    return ClientSettings(
        base_url=settings.base_url,
        api_key=settings.api_key,
        model=settings.model,
        organization=settings.organization,
        request_timeout=settings.request_timeout,
        max_retries=settings.max_retries,
        retry_min_seconds=settings.retry_min_seconds,
        retry_max_seconds=settings.retry_max_seconds,
        default_headers=settings.default_headers,
        metadata=settings.metadata,
        debug_logging=debug_logging or settings.debug_logging,
    )


async def _shutdown(runtime: Runtime) -> None:
    """Close network clients owned by the runtime."""

    for resource in runtime.closers:
        close = getattr(resource, "aclose", None)
        if close is None:
            continue
        try:
            await close()
        except Exception as exc:  # pragma: no cover
            _LOGGER.debug("Shutdown of %s failed: %s", type(resource).__name__, exc)


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="arbor",
        add_help=True,
        description="Edit a tree document together with an AI assistant, or inspect configuration.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.arbor/settings.json path.",
    )
    parser.add_argument(
        "--document",
        metavar="PATH",
        help="Tree document to open (created on first save when missing).",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings before launch (repeatable).",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    """Turn ``KEY=VALUE`` strings into :class:`Settings` overrides of the field's type."""

    if not items:
        return {}
    annotations = get_type_hints(Settings)
    overrides: Dict[str, Any] = {}
    for entry in items:
        name, separator, text = entry.partition("=")
        name = name.strip()
        if not separator:
            raise ValueError(f"Expected KEY=VALUE, got '{entry}'.")
        if not name:
            raise ValueError(f"Override '{entry}' does not name a setting.")
        if name not in annotations:
            raise ValueError(f"Unknown setting '{name}'.")
        parser = _OVERRIDE_PARSERS.get(_base_type(annotations[name]), str)
        overrides[name] = parser(text.strip())
    return overrides


def _base_type(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is dict:
        return dict
    if origin in (Union, UnionType):
        members = [arg for arg in get_args(annotation) if arg is not type(None)]
        return _base_type(members[0]) if len(members) == 1 else str
    return annotation


def _parse_bool(text: str) -> bool:
    lowered = text.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"'{text}' is not a boolean; use true or false.")


def _parse_int(text: str) -> int:
    return int(text, 10)


def _parse_mapping(text: str) -> Dict[str, Any]:
    value = json.loads(text or "{}")
    if not isinstance(value, dict):
        raise ValueError("Mapping overrides must be JSON objects.")
    return value


_OVERRIDE_PARSERS: Dict[Any, Callable[[str], Any]] = {
    bool: _parse_bool,
    int: _parse_int,
    float: float,
    dict: _parse_mapping,
}


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any] | None = None,
    stream: TextIO | None = None,
) -> None:
    payload = asdict(settings)
    payload["api_key"] = redact_secret(settings.api_key)
    report = {
        "settings_path": str(store.path),
        "log_path": str(logging_utils.get_log_path() or ""),
        "cli_overrides": sorted(overrides or {}),
        "settings": payload,
    }
    target = stream or sys.stdout
    json.dump(report, target, indent=2, sort_keys=True, default=str)
    target.write("\n")
    with contextlib.suppress(AttributeError):
        target.flush()


__all__ = [
    "Runtime",
    "build_runtime",
    "configure_logging",
    "load_document",
    "load_settings",
    "main",
    "run_console",
]
