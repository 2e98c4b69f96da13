import asyncio
import json
import unittest

from clarifier.errors import GenerationError, ProviderError, ProviderErrorKind, ValidationError
from clarifier.output_generator import (
    GenerationConfig,
    OutputGenerator,
    count_words,
    parse_structured_output,
    validate_generation_input,
)
from clarifier.prompts import GENERATION_SYSTEM_PROMPT
from tests.fakes import BRIEF_TEXT, IDEAS_JSON, ScriptedProvider, fast_generation_config, fast_retry

_FENCED = f"Here you go:\n```json\n{json.dumps(IDEAS_JSON)}\n```\nEnjoy!"


def _words(n: int) -> str:
    return " ".join(f"word{i}" for i in range(n))


class ParseStructuredOutputTests(unittest.TestCase):
    def test_fenced_block(self) -> None:
        parsed = parse_structured_output(_FENCED)
        self.assertEqual(IDEAS_JSON, parsed.structured)
        self.assertEqual(_FENCED, parsed.raw)

    def test_whole_reply_as_json(self) -> None:
        raw = json.dumps([{"title": "a"}])
        self.assertEqual([{"title": "a"}], parse_structured_output(raw).structured)

    def test_unlabelled_fence(self) -> None:
        raw = '```\n{"ideas": []}\n```'
        self.assertEqual({"ideas": []}, parse_structured_output(raw).structured)

    def test_invalid_json_degrades_to_raw(self) -> None:
        raw = "```json\n{not valid}\n```"
        parsed = parse_structured_output(raw)
        self.assertIsNone(parsed.structured)
        self.assertEqual(raw, parsed.raw)

    def test_plain_text_and_scalars_are_not_structured(self) -> None:
        self.assertIsNone(parse_structured_output("1. Idea one\n2. Idea two").structured)
        self.assertIsNone(parse_structured_output("42").structured)
        self.assertIsNone(parse_structured_output("").structured)


class ValidationTests(unittest.TestCase):
    def test_brief_of_49_words_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            validate_generation_input("business", _words(49))
        self.assertEqual("brief", ctx.exception.field)
        self.assertIn("at least 50 words", str(ctx.exception))
        self.assertIn("(49 words)", str(ctx.exception))

    def test_brief_of_exactly_50_words_is_accepted(self) -> None:
        validate_generation_input("business", _words(50))

    def test_empty_or_non_string_brief(self) -> None:
        for brief in ("", "   ", None, 123):
            with self.subTest(brief=brief), self.assertRaises(ValidationError) as ctx:
                validate_generation_input("business", brief)
            self.assertEqual("brief", ctx.exception.field)

    def test_domain_must_be_non_empty(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            validate_generation_input(" ", _words(60))
        self.assertEqual("domain", ctx.exception.field)

    def test_count_words(self) -> None:
        self.assertEqual(3, count_words(" a  b\nc "))
        self.assertEqual(0, count_words(""))


class OutputGeneratorTests(unittest.TestCase):
    def _generate(self, provider, config: GenerationConfig | None = None, brief: str = BRIEF_TEXT):
        generator = OutputGenerator(provider, config or fast_generation_config())
        return asyncio.run(generator.generate("business", brief))

    def test_primary_model_success(self) -> None:
        provider = ScriptedProvider([_FENCED])
        result = self._generate(provider)

        self.assertEqual(IDEAS_JSON, result.structured_output)
        self.assertEqual(_FENCED, result.raw_output)
        self.assertEqual("google/gemini-2.0-flash-exp:free", result.model)
        self.assertEqual(count_words(_FENCED), result.word_count)
        call = provider.calls[0]
        self.assertEqual(GENERATION_SYSTEM_PROMPT, call["system_prompt"])
        self.assertIn(BRIEF_TEXT, call["messages"][0]["content"])

    def test_raw_text_is_still_returned(self) -> None:
        result = self._generate(ScriptedProvider(["1. Idea one\n2. Idea two"]))
        self.assertIsNone(result.structured_output)
        self.assertEqual("1. Idea one\n2. Idea two", result.raw_output)

    def test_falls_over_to_secondary_model(self) -> None:
        down = ProviderError("503", ProviderErrorKind.SERVER, status_code=503)
        provider = ScriptedProvider([down, down, _FENCED])
        result = self._generate(provider)

        self.assertEqual("openai/gpt-4o", result.model)
        self.assertEqual(
            ["google/gemini-2.0-flash-exp:free", "google/gemini-2.0-flash-exp:free", "openai/gpt-4o"],
            [c["model"] for c in provider.calls],
        )

    def test_non_retryable_error_moves_to_next_model_without_retry(self) -> None:
        provider = ScriptedProvider([ProviderError("bad model", ProviderErrorKind.BAD_REQUEST, status_code=404), _FENCED])
        result = self._generate(provider)
        self.assertEqual("openai/gpt-4o", result.model)
        self.assertEqual(2, len(provider.calls))

    def test_rate_limit_aborts_all_attempts(self) -> None:
        provider = ScriptedProvider(default=ProviderError("quota", ProviderErrorKind.RATE_LIMIT, status_code=429))
        with self.assertRaises(GenerationError) as ctx:
            self._generate(provider)
        self.assertEqual("RATE_LIMIT_ERROR", ctx.exception.code)
        self.assertEqual(1, len(provider.calls))

    def test_exhausting_every_model_fails(self) -> None:
        provider = ScriptedProvider(default=ProviderError("reset", ProviderErrorKind.NETWORK))
        with self.assertRaises(GenerationError) as ctx:
            self._generate(provider)
        self.assertEqual("GENERATION_FAILED", ctx.exception.code)
        self.assertFalse(ctx.exception.timed_out)
        self.assertEqual(4, len(provider.calls))

    def test_timeouts_are_flagged(self) -> None:
        provider = ScriptedProvider(default="<hang>")
        with self.assertRaises(GenerationError) as ctx:
            self._generate(provider, fast_generation_config(retry=fast_retry(1, timeout=0.02)))
        self.assertTrue(ctx.exception.timed_out)
        self.assertEqual(2, len(provider.calls))

    def test_without_fallback_model(self) -> None:
        provider = ScriptedProvider(default=ProviderError("reset", ProviderErrorKind.NETWORK))
        with self.assertRaises(GenerationError):
            self._generate(provider, fast_generation_config(fallback_model=None))
        self.assertEqual(2, len(provider.calls))

    def test_short_brief_rejected_before_any_call(self) -> None:
        provider = ScriptedProvider([_FENCED])
        with self.assertRaises(ValidationError):
            self._generate(provider, brief="Too short")
        self.assertEqual([], provider.calls)

    def test_missing_key(self) -> None:
        provider = ScriptedProvider(configured=False)
        with self.assertRaises(GenerationError) as ctx:
            self._generate(provider)
        self.assertEqual("MISSING_API_KEY", ctx.exception.code)
