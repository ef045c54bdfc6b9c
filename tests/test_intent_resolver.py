from __future__ import annotations

import json
from unittest import IsolatedAsyncioTestCase
from uuid import uuid4

from equiledger.schemas.intents import Intent
from equiledger.services.intents import IntentResolver, clean_model_output, normalise_intent
from tests.fakes import ScriptedClassifier


def _payload(intent: str, confidence: float = 0.9, **parameters) -> str:
    return json.dumps(
        {"intent": intent, "confidence": confidence, "parameters": parameters, "response": "ok"}
    )


class IntentResolverTests(IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.user_id = uuid4()

    async def test_resolves_invoice_request(self) -> None:
        classifier = ScriptedClassifier(
            _payload("CREATE_INVOICE", 0.95, client_name="ABC Company", amount=500, description="Website design")
        )
        resolver = IntentResolver(classifier)

        result = await resolver.resolve(self.user_id, "Invoice ABC Company R500 for website design")

        self.assertEqual(result.intent, Intent.CREATE_INVOICE)
        self.assertAlmostEqual(result.confidence, 0.95)
        self.assertEqual(result.parameters["client_name"], "ABC Company")
        self.assertEqual(classifier.calls, ["Invoice ABC Company R500 for website design"])

    async def test_accepts_legacy_intent_names(self) -> None:
        for raw, expected in [
            ("INVOICE_CREATE", Intent.CREATE_INVOICE),
            ("EXPENSE_LOG", Intent.LOG_EXPENSE),
            ("INVOICE_UPDATE", Intent.UPDATE_INVOICE),
            ("REPORT_GENERATE", Intent.GENERATE_REPORT),
            ("financial summary", Intent.FINANCIAL_SUMMARY),
        ]:
            with self.subTest(raw=raw):
                self.assertEqual(normalise_intent(raw), expected)
        self.assertIsNone(normalise_intent("ORDER_PIZZA"))
        self.assertIsNone(normalise_intent(None))

    async def test_strips_code_fences(self) -> None:
        fenced = "```json\n" + _payload("LOG_EXPENSE", amount=450) + "\n```"
        self.assertEqual(json.loads(clean_model_output(fenced))["intent"], "LOG_EXPENSE")

        resolver = IntentResolver(ScriptedClassifier(fenced))
        result = await resolver.resolve(self.user_id, "Spent R450 on fuel")
        self.assertEqual(result.intent, Intent.LOG_EXPENSE)

    async def test_degrades_to_help_on_bad_output(self) -> None:
        for output in ["not json", "[1, 2]", _payload("ORDER_PIZZA"), '{"confidence": 1}']:
            with self.subTest(output=output):
                resolver = IntentResolver(ScriptedClassifier(output))
                result = await resolver.resolve(self.user_id, "hmm")
                self.assertEqual(result.intent, Intent.HELP)
                self.assertEqual(result.confidence, 0.0)
                self.assertTrue(result.response)

    async def test_degrades_to_help_when_classifier_raises(self) -> None:
        resolver = IntentResolver(ScriptedClassifier(RuntimeError("quota exceeded")))
        with self.assertLogs("equiledger.services.intents", level="ERROR"):
            result = await resolver.resolve(self.user_id, "Invoice ABC R500")
        self.assertEqual(result.intent, Intent.HELP)
        self.assertEqual(result.confidence, 0.0)

    async def test_times_out_slow_classifier(self) -> None:
        classifier = ScriptedClassifier(_payload("CREATE_INVOICE"), delay=1.0)
        resolver = IntentResolver(classifier, timeout_seconds=0.01)
        result = await resolver.resolve(self.user_id, "Invoice ABC R500")
        self.assertEqual(result.intent, Intent.HELP)
        self.assertEqual(result.confidence, 0.0)

    async def test_over_long_message_never_reaches_classifier(self) -> None:
        classifier = ScriptedClassifier(_payload("CREATE_INVOICE"))
        resolver = IntentResolver(classifier, max_message_length=20)
        result = await resolver.resolve(self.user_id, "x" * 21)
        self.assertEqual(result.intent, Intent.HELP)
        self.assertEqual(result.confidence, 0.0)
        self.assertIn("20", result.response)
        self.assertEqual(classifier.calls, [])

    async def test_empty_message_is_help(self) -> None:
        classifier = ScriptedClassifier()
        result = await IntentResolver(classifier).resolve(self.user_id, "   ")
        self.assertEqual(result.intent, Intent.HELP)
        self.assertEqual(classifier.calls, [])

    async def test_low_confidence_becomes_help(self) -> None:
        resolver = IntentResolver(ScriptedClassifier(_payload("CREATE_INVOICE", 0.1)))
        result = await resolver.resolve(self.user_id, "maybe something")
        self.assertEqual(result.intent, Intent.HELP)
        self.assertEqual(result.confidence, 0.0)

    async def test_confidence_is_clamped_and_parameters_sanitised(self) -> None:
        raw = json.dumps({"intent": "GREETING", "confidence": 7, "parameters": "oops", "response": 3})
        result = await IntentResolver(ScriptedClassifier(raw)).resolve(self.user_id, "hi")
        self.assertEqual(result.intent, Intent.GREETING)
        self.assertEqual(result.confidence, 1.0)
        self.assertEqual(result.parameters, {})
        self.assertEqual(result.response, "")

    async def test_non_finite_confidence_is_treated_as_zero(self) -> None:
        outputs = [
            '{"intent": "CREATE_INVOICE", "confidence": NaN, "parameters": {}}',
            '{"intent": "CREATE_INVOICE", "confidence": Infinity, "parameters": {}}',
            '{"intent": "LOG_EXPENSE", "confidence": -Infinity}',
            '{"intent": "LOG_EXPENSE", "confidence": "nan"}',
            '{"intent": "LOG_EXPENSE", "confidence": 1' + "0" * 400 + "}",
        ]
        for raw in outputs:
            with self.subTest(raw=raw[:60]):
                result = await IntentResolver(ScriptedClassifier(raw)).resolve(self.user_id, "R500 ABC")
                self.assertEqual(result.intent, Intent.HELP)
                self.assertEqual(result.confidence, 0.0)

    async def test_greeting_with_nan_confidence_still_greets(self) -> None:
        raw = '{"intent": "GREETING", "confidence": NaN, "response": "Hello!"}'
        result = await IntentResolver(ScriptedClassifier(raw)).resolve(self.user_id, "hi")
        self.assertEqual(result.intent, Intent.GREETING)
        self.assertEqual(result.confidence, 0.0)
        self.assertEqual(result.response, "Hello!")

    async def test_non_text_classifier_output_is_help(self) -> None:
        classifier = ScriptedClassifier({"intent": "CREATE_INVOICE", "confidence": 0.9})
        with self.assertLogs("equiledger.services.intents", level="WARNING"):
            result = await IntentResolver(classifier).resolve(self.user_id, "Invoice ABC R500")
        self.assertEqual(result.intent, Intent.HELP)
        self.assertEqual(result.confidence, 0.0)
