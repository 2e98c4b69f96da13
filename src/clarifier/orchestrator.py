from __future__ import annotations

from loguru import logger

from clarifier.brief_synthesizer import BriefSynthesizer
from clarifier.errors import (
    AuthenticationError,
    ClarifierError,
    GenerationError,
    GenerationTimeoutError,
    InternalError,
    NotFoundError,
    RateLimitError,
    SessionStateError,
    StoreError,
    SynthesisError,
    ValidationError,
)
from clarifier.logging_config import session_context
from clarifier.memory.models import MessageRecord, SessionRecord, SessionStatus
from clarifier.memory.session_manager import SessionManager
from clarifier.output_generator import OutputGenerator, count_words
from clarifier.prompts import Intensity, parse_intensity
from clarifier.rate_limiter import RateLimiter
from clarifier.schemas import ChatRequest, ChatResponse
from clarifier.turn_processor import TurnProcessor

MIN_QUESTIONS = 3


def count_questions(messages: list[MessageRecord]) -> int:
    """Number of questions asked so far.

    Every assistant message counts, including informational replies and
    fallback sentences, so this can overstate the real number of questions.
    """
    return sum(1 for m in messages if m.role == "assistant")


def _completion_message(domain: str) -> str:
    return (
        f"I've put together a brief from our conversation and generated your {domain} output. "
        "You'll find both below."
    )


class SessionOrchestrator:
    """Owns the session lifecycle and sequences the pipeline for each chat request."""

    def __init__(
        self,
        sessions: SessionManager,
        rate_limiter: RateLimiter,
        turn_processor: TurnProcessor,
        synthesizer: BriefSynthesizer,
        generator: OutputGenerator,
        *,
        min_questions: int = MIN_QUESTIONS,
        default_intensity: Intensity = Intensity.DEEP,
    ):
        self._sessions = sessions
        self._rate_limiter = rate_limiter
        self._turns = turn_processor
        self._synthesizer = synthesizer
        self._generator = generator
        self._min_questions = min_questions
        self._default_intensity = default_intensity

    @property
    def min_questions(self) -> int:
        return self._min_questions

    async def handle(self, caller_id: str, request: ChatRequest) -> ChatResponse:
        try:
            return await self._handle(caller_id, request)
        except ClarifierError:
            raise
        except Exception as ex:
            logger.exception(f"Unhandled error while processing chat request: {ex}")
            raise InternalError(f"Internal server error: {type(ex).__name__}") from ex

    async def _handle(self, caller_id: str, request: ChatRequest) -> ChatResponse:
        if not caller_id or not caller_id.strip():
            raise AuthenticationError("Caller is not authenticated")
        message = self._turns.validate_message(request.message)

        if request.session_id is None:
            session = self._start_session(caller_id, request)
            history: list[MessageRecord] = []
        else:
            session = self._load_session(caller_id, request)
            history = self._sessions.load_messages(session.id)

        question_count = count_questions(history)
        with session_context(session.id):
            if request.generate_now:
                return await self._generate(session, history, message, question_count)
            return await self._continue(session, history, message, request.intensity)

    def _start_session(self, caller_id: str, request: ChatRequest) -> SessionRecord:
        if request.domain is None:
            raise ValidationError("Domain is required for new sessions", "domain", code="DOMAIN_REQUIRED")
        if request.generate_now:
            raise self._min_questions_error(0)

        limit = self._rate_limiter.check_rate_limit(caller_id)
        if not limit.allowed:
            logger.info(f"Session creation denied by rate limit: user={caller_id}, tier={limit.tier}")
            raise RateLimitError(
                f"You've reached your limit of {limit.limit} sessions",
                remaining=limit.remaining,
                limit=limit.limit,
                tier=limit.tier,
            )

        intensity = request.intensity or self._default_intensity
        return self._sessions.create_session(caller_id, request.domain.value, intensity.value)

    def _load_session(self, caller_id: str, request: ChatRequest) -> SessionRecord:
        session = self._sessions.get_session(request.session_id)
        if session is None or session.user_id != caller_id:
            raise NotFoundError(f"Session not found: {request.session_id}")
        if session.status is SessionStatus.COMPLETED:
            raise SessionStateError(
                "Session is already completed",
                code="SESSION_COMPLETED",
                user_message="This session has already been completed. Start a new session to continue.",
            )
        if session.status is SessionStatus.GENERATING and not request.generate_now:
            raise self._generation_in_progress_error()
        if request.domain is not None and request.domain.value != session.domain:
            logger.debug(f"Ignoring domain change for session {session.id}; domain is fixed at creation")
        return session

    async def _continue(
        self,
        session: SessionRecord,
        history: list[MessageRecord],
        message: str,
        requested_intensity: Intensity | None,
    ) -> ChatResponse:
        intensity = parse_intensity(session.intensity)
        if requested_intensity is not None and requested_intensity is not intensity:
            self._sessions.update_intensity(session.id, requested_intensity.value)
            intensity = requested_intensity

        self._sessions.append_message(session.id, "user", message)
        turn = await self._turns.process(
            session.domain,
            [m.as_chat_message() for m in history],
            message,
            intensity,
        )
        self._sessions.append_message(session.id, "assistant", turn.text, question_type=intensity.value)

        question_count = count_questions(history) + 1
        logger.info(
            f"Turn complete: session={session.id}, questions={question_count}, "
            f"fallback={turn.used_fallback}, suggested_termination={turn.suggested_termination}"
        )
        return ChatResponse(
            session_id=session.id,
            response_message=turn.text,
            is_completed=False,
            status=SessionStatus.QUESTIONING.value,
            question_count=question_count,
            can_generate=question_count >= self._min_questions,
            suggested_termination=turn.suggested_termination,
        )

    async def _generate(
        self,
        session: SessionRecord,
        history: list[MessageRecord],
        message: str,
        question_count: int,
    ) -> ChatResponse:
        if question_count < self._min_questions:
            raise self._min_questions_error(question_count)
        if not self._sessions.claim_generation(session.id):
            raise self._generation_in_progress_error()

        try:
            user_message = self._sessions.append_message(session.id, "user", message)
            conversation = [m.as_chat_message() for m in history] + [user_message.as_chat_message()]

            brief = await self._resolve_brief(session, conversation)
            result = await self._generator.generate(session.domain, brief)
            generated = result.structured_output if result.structured_output is not None else result.raw_output
            final_output = {"brief": brief, "generatedIdeas": generated}
            self._sessions.complete_session(session.id, final_output)
        except (SynthesisError, GenerationError) as ex:
            self._release_claim(session.id)
            if ex.timed_out:
                raise GenerationTimeoutError(str(ex), details=ex.code) from ex
            raise
        except BaseException:
            # Cancellation and interrupts must not leave the session locked.
            self._release_claim(session.id)
            raise

        update = self._rate_limiter.increment_usage(session.user_id)
        if update.error:
            logger.warning(f"Session {session.id} completed but usage was not recorded: {update.error}")

        summary = _completion_message(session.domain)
        try:
            self._sessions.append_message(session.id, "assistant", summary)
        except StoreError as ex:
            logger.warning(f"Completion message not saved for session {session.id}: {ex}")

        return ChatResponse(
            session_id=session.id,
            response_message=summary,
            is_completed=True,
            status=SessionStatus.COMPLETED.value,
            question_count=question_count,
            can_generate=False,
            final_output=final_output,
        )

    async def _resolve_brief(self, session: SessionRecord, conversation: list[dict]) -> str:
        """Saved brief when it is usable, otherwise a freshly synthesized one.

        A brief below the generator's word minimum is never saved, so a retry
        always synthesizes again instead of replaying the same short brief.
        """
        min_words = self._generator.min_brief_words
        saved = session.final_brief
        if saved and count_words(saved) >= min_words:
            logger.info(f"Reusing saved brief for session {session.id}")
            return saved

        brief = await self._synthesizer.synthesize(session.domain, conversation)
        words = count_words(brief)
        if words < min_words:
            logger.error(f"Synthesized brief too short for session {session.id}: {words} words")
            raise SynthesisError(
                f"Synthesized brief is too short ({words} words, need at least {min_words})",
                code="BRIEF_TOO_SHORT",
            )
        self._sessions.set_final_brief(session.id, brief)
        return brief

    def _release_claim(self, session_id: str) -> None:
        try:
            self._sessions.release_generation_claim(session_id)
        except StoreError as ex:
            logger.error(f"Could not release generation claim for session {session_id}: {ex}")

    def _min_questions_error(self, question_count: int) -> SessionStateError:
        return SessionStateError(
            f"At least {self._min_questions} questions are required before generating "
            f"(currently {question_count})",
            code="MIN_QUESTIONS_NOT_MET",
            user_message=f"Please answer at least {self._min_questions} questions before generating.",
        )

    @staticmethod
    def _generation_in_progress_error() -> SessionStateError:
        return SessionStateError(
            "Generation is already in progress for this session",
            code="GENERATION_IN_PROGRESS",
            user_message="Your output is already being generated. Please wait a moment.",
        )
