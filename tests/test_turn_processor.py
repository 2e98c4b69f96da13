import asyncio
import unittest

from clarifier.errors import ConversationError, ProviderError, ProviderErrorKind, ValidationError
from clarifier.prompts import get_fallback_response, get_meta_prompt
from clarifier.termination import KeywordTerminationPolicy
from clarifier.turn_processor import TurnProcessor, sanitize_message, trim_history, validate_history
from tests.fakes import ScriptedProvider, fast_retry, fast_turn_config


def _history(n: int) -> list[dict]:
    return [
        {"role": "user" if i % 2 == 0 else "assistant", "content": f"message {i}"}
        for i in range(n)
    ]


class _AlwaysReady:
    def suggests_readiness(self, text: str) -> bool:
        return True


class HelperTests(unittest.TestCase):
    def test_sanitize_strips_null_bytes_and_whitespace(self) -> None:
        self.assertEqual("hello world", sanitize_message("  hel\x00lo world\n"))

    def test_trim_keeps_most_recent(self) -> None:
        trimmed = trim_history(_history(25), 10)
        self.assertEqual(10, len(trimmed))
        self.assertEqual("message 15", trimmed[0]["content"])
        self.assertEqual("message 24", trimmed[-1]["content"])

    def test_trim_short_history_is_unchanged(self) -> None:
        self.assertEqual(_history(3), trim_history(_history(3), 10))

    def test_validate_history_rejects_bad_shapes(self) -> None:
        for bad in ("not a list", [{"role": "system", "content": "x"}], [{"role": "user", "content": 5}], ["x"]):
            with self.subTest(bad=bad), self.assertRaises(ValidationError) as ctx:
                validate_history(bad)
            self.assertEqual("history", ctx.exception.field)

    def test_validate_history_sanitizes_and_drops_blank_entries(self) -> None:
        cleaned = validate_history([{"role": "user", "content": " a\x00 "}, {"role": "assistant", "content": "\x00 "}])
        self.assertEqual([{"role": "user", "content": "a"}], cleaned)


class TurnProcessorTests(unittest.TestCase):
    def _process(self, processor: TurnProcessor, **kwargs):
        args = {"domain": "business", "history": [], "user_message": "I want to open a bakery", "intensity": "deep"}
        args.update(kwargs)
        return asyncio.run(processor.process(**args))

    def test_successful_turn(self) -> None:
        provider = ScriptedProvider(["  Who are your customers?  "])
        result = self._process(TurnProcessor(provider, fast_turn_config()))

        self.assertEqual("Who are your customers?", result.text)
        self.assertFalse(result.used_fallback)
        self.assertFalse(result.suggested_termination)
        call = provider.calls[0]
        self.assertEqual(get_meta_prompt("business", "deep"), call["system_prompt"])
        self.assertEqual([{"role": "user", "content": "I want to open a bakery"}], call["messages"])
        self.assertEqual(0.7, call["temperature"])
        self.assertEqual(500, call["max_tokens"])
        self.assertEqual("google/gemini-2.5-flash", call["model"])

    def test_intensity_selects_prompt(self) -> None:
        provider = ScriptedProvider(["Q?"])
        self._process(TurnProcessor(provider, fast_turn_config()), domain="coding", intensity="basic")
        self.assertEqual(get_meta_prompt("coding", "basic"), provider.calls[0]["system_prompt"])

    def test_history_sent_is_capped_at_ten(self) -> None:
        provider = ScriptedProvider(["Next question?"])
        self._process(TurnProcessor(provider, fast_turn_config()), history=_history(25))

        sent = provider.calls[0]["messages"]
        self.assertEqual(11, len(sent))
        self.assertEqual(_history(25)[-10:], sent[:10])
        self.assertEqual({"role": "user", "content": "I want to open a bakery"}, sent[-1])

    def test_termination_heuristic(self) -> None:
        provider = ScriptedProvider(["I have enough information. Shall we proceed?"])
        result = self._process(TurnProcessor(provider, fast_turn_config()))
        self.assertTrue(result.suggested_termination)

    def test_termination_policy_is_pluggable(self) -> None:
        provider = ScriptedProvider(["Tell me more."])
        result = self._process(TurnProcessor(provider, fast_turn_config(), _AlwaysReady()))
        self.assertTrue(result.suggested_termination)

    def test_blank_reply_is_retried(self) -> None:
        provider = ScriptedProvider(["   ", "What is your budget?"])
        result = self._process(TurnProcessor(provider, fast_turn_config()))
        self.assertEqual("What is your budget?", result.text)
        self.assertEqual(2, len(provider.calls))

    def test_persistent_network_failure_returns_domain_fallback(self) -> None:
        provider = ScriptedProvider(default=ProviderError("connection reset", ProviderErrorKind.NETWORK))
        result = self._process(TurnProcessor(provider, fast_turn_config()), domain="research")

        self.assertTrue(result.used_fallback)
        self.assertEqual(get_fallback_response("research"), result.text)
        self.assertTrue(result.text)
        self.assertEqual(2, len(provider.calls))

    def test_timeouts_fall_back_after_retries(self) -> None:
        provider = ScriptedProvider(default="<hang>")
        processor = TurnProcessor(provider, fast_turn_config(retry=fast_retry(2, timeout=0.02)))
        result = self._process(processor, domain="creative")
        self.assertEqual(get_fallback_response("creative"), result.text)
        self.assertEqual(2, len(provider.calls))

    def test_rate_limit_raises_without_retrying(self) -> None:
        provider = ScriptedProvider(
            default=ProviderError("429 Too Many Requests", ProviderErrorKind.RATE_LIMIT, status_code=429)
        )
        processor = TurnProcessor(provider, fast_turn_config(retry=fast_retry(5)))
        with self.assertRaises(ConversationError) as ctx:
            self._process(processor)
        self.assertEqual("RATE_LIMIT_ERROR", ctx.exception.code)
        self.assertEqual(1, len(provider.calls))

    def test_auth_failure_raises(self) -> None:
        provider = ScriptedProvider(default=ProviderError("bad key", ProviderErrorKind.AUTH, status_code=401))
        with self.assertRaises(ConversationError) as ctx:
            self._process(TurnProcessor(provider, fast_turn_config()))
        self.assertEqual("AUTH_ERROR", ctx.exception.code)
        self.assertEqual(1, len(provider.calls))

    def test_missing_key_detected_before_any_call(self) -> None:
        provider = ScriptedProvider(["unused"], configured=False)
        with self.assertRaises(ConversationError) as ctx:
            self._process(TurnProcessor(provider, fast_turn_config()))
        self.assertEqual("MISSING_API_KEY", ctx.exception.code)
        self.assertEqual([], provider.calls)

    def test_bad_request_falls_back(self) -> None:
        provider = ScriptedProvider(default=ProviderError("bad model", ProviderErrorKind.BAD_REQUEST, status_code=400))
        result = self._process(TurnProcessor(provider, fast_turn_config()))
        self.assertTrue(result.used_fallback)
        self.assertEqual(1, len(provider.calls))

    def test_validation_happens_before_any_call(self) -> None:
        provider = ScriptedProvider(["unused"])
        processor = TurnProcessor(provider, fast_turn_config())
        cases = [
            ({"domain": "cooking"}, "domain"),
            ({"user_message": " \x00 "}, "message"),
            ({"user_message": "x" * 5001}, "message"),
            ({"history": [{"role": "tool", "content": "x"}]}, "history"),
            ({"intensity": "medium"}, "intensity"),
        ]
        for kwargs, field in cases:
            with self.subTest(field=field), self.assertRaises(ValidationError) as ctx:
                self._process(processor, **kwargs)
            self.assertEqual(field, ctx.exception.field)
        self.assertEqual([], provider.calls)

    def test_message_at_limit_is_accepted(self) -> None:
        provider = ScriptedProvider(["ok?"])
        self._process(TurnProcessor(provider, fast_turn_config()), user_message="y" * 5000)
        self.assertEqual(1, len(provider.calls))

    def test_default_policy_is_keyword_based(self) -> None:
        processor = TurnProcessor(ScriptedProvider())
        self.assertIsInstance(processor._termination, KeywordTerminationPolicy)
