import asyncio
import getpass
import json
import sys

from dotenv import load_dotenv
from loguru import logger

from clarifier.app_config import AppConfig, RuntimeEnv, load_json_config, parse_app_config, resolve_runtime_env
from clarifier.bootstrap import AppRuntime, bootstrap_runtime
from clarifier.commands.router import CommandRouter
from clarifier.errors import ClarifierError
from clarifier.prompts import Intensity, available_domains, parse_domain, parse_intensity
from clarifier.schemas import ChatRequest, ChatResponse

_HELP = """\
Commands:
  /new <domain> [basic|deep]  start a session (domains: {domains})
  /generate [note]            build the brief and generate the final output
  /status                     show the current session
  /help                       show this help
  exit                        quit"""

_GENERATE_NOTE = "Please generate the output now."


class InteractiveSession:
    """State of one terminal user: the active session and how to talk to it."""

    def __init__(self, runtime: AppRuntime, caller_id: str, default_intensity: Intensity):
        self._runtime = runtime
        self._caller_id = caller_id
        self._default_intensity = default_intensity
        self._pending_domain = None
        self._pending_intensity = default_intensity
        self._session_id: str | None = None
        self._question_count = 0
        self._can_generate = False

    async def on_help(self) -> None:
        print(_HELP.format(domains=", ".join(d.value for d in available_domains())))

    async def on_new(self, argument: str) -> None:
        parts = argument.split()
        if not parts:
            print("Usage: /new <domain> [basic|deep]")
            return
        try:
            self._pending_domain = parse_domain(parts[0].lower())
            self._pending_intensity = parse_intensity(parts[1].lower()) if len(parts) > 1 else self._default_intensity
        except ClarifierError as ex:
            print(f"error> {ex}")
            return
        self._session_id = None
        self._question_count = 0
        self._can_generate = False
        print(
            f"New {self._pending_domain.value} session ({self._pending_intensity.value}). "
            "Describe what you're working on to begin."
        )

    async def on_generate(self, argument: str) -> None:
        if self._session_id is None:
            print("No active session. Start one with /new <domain>.")
            return
        await self.send(argument or _GENERATE_NOTE, generate_now=True)

    async def on_status(self) -> None:
        if self._session_id is None:
            domain = self._pending_domain.value if self._pending_domain else "none"
            print(f"No active session (next domain: {domain})")
            return
        session = self._runtime.sessions.get_session(self._session_id)
        if session is None:
            print("Session no longer exists.")
            return
        print(
            f"Session {session.id}: domain={session.domain}, status={session.status.value}, "
            f"intensity={session.intensity}, questions={self._question_count}, can_generate={self._can_generate}"
        )

    @staticmethod
    def on_unknown(command: str) -> None:
        print(f"Unknown command: {command}. Type /help for commands.")

    async def send(self, message: str, *, generate_now: bool = False) -> None:
        if self._session_id is None and self._pending_domain is None:
            print("Start a session first with /new <domain> [basic|deep].")
            return

        request = ChatRequest(
            message=message,
            session_id=self._session_id,
            domain=self._pending_domain if self._session_id is None else None,
            generate_now=generate_now,
            intensity=self._pending_intensity if self._session_id is None else None,
        )
        try:
            response = await self._runtime.orchestrator.handle(self._caller_id, request)
        except ClarifierError as ex:
            logger.debug(f"Request failed: {ex.code}: {ex}")
            print(f"error> {ex.user_message} [{ex.code}]")
            return
        self._show(response)

    def _show(self, response: ChatResponse) -> None:
        self._session_id = response.session_id
        if response.question_count is not None:
            self._question_count = response.question_count
        self._can_generate = bool(response.can_generate)

        print(f"assistant> {response.response_message}")
        if response.is_completed and response.final_output:
            print("\n--- Brief ---")
            print(response.final_output["brief"])
            print("\n--- Output ---")
            ideas = response.final_output["generatedIdeas"]
            print(ideas if isinstance(ideas, str) else json.dumps(ideas, indent=2, ensure_ascii=False))
            print()
            self._session_id = None
            self._pending_domain = None
            return
        if response.suggested_termination and response.can_generate:
            print("(It looks like there's enough context. Type /generate when you're ready.)")
        elif response.can_generate:
            print("(You can type /generate at any time.)")


async def run_interactive(app: AppConfig, env: RuntimeEnv) -> None:
    runtime = bootstrap_runtime(app, env)
    state = InteractiveSession(runtime, getpass.getuser(), app.default_intensity)
    router = CommandRouter(
        on_help=state.on_help,
        on_new=state.on_new,
        on_generate=state.on_generate,
        on_status=state.on_status,
        on_unknown=state.on_unknown,
    )

    print("clarifier (type 'exit' to quit, '/help' for commands)")
    print(f"Provider: {app.provider_name} (model: {app.conversation_model})")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        while True:
            try:
                user_input = input("you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue

            if await router.try_handle(trimmed):
                continue
            await state.send(trimmed)
            print()
    finally:
        runtime.close()


def serve(app: AppConfig, env: RuntimeEnv) -> None:
    import uvicorn

    from clarifier.api import create_app

    runtime = bootstrap_runtime(app, env)
    try:
        uvicorn.run(create_app(runtime.orchestrator), host=app.host, port=app.port, log_config=None)
    finally:
        runtime.close()


def main() -> None:
    load_dotenv()
    app = parse_app_config(load_json_config())
    env = resolve_runtime_env(app.provider_name)

    if sys.argv[1:2] == ["serve"]:
        serve(app, env)
        return
    asyncio.run(run_interactive(app, env))


if __name__ == "__main__":
    main()
