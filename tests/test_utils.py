import json
import logging
import unittest

from agent_dashboard.observability.structured_log import log_json
from agent_dashboard.util import mask_secret, redact, redact_with_audit


class TestRedaction(unittest.TestCase):
    def test_redacts_provider_keys(self):
        self.assertEqual(redact("key sk-ant-demo-key-67890 set"), "key sk-ant-REDACTED set")
        self.assertEqual(redact("key sk-demo-key-12345 set"), "key sk-REDACTED set")

    def test_redacts_bearer_and_assignments(self):
        self.assertEqual(redact("Authorization: Bearer abc.def"), "Authorization: Bearer REDACTED")
        self.assertIn("API_KEY=REDACTED", redact("API_KEY=hunter2"))

    def test_audit_counts_replacements(self):
        result = redact_with_audit("nothing secret here")
        self.assertFalse(result.redacted)
        self.assertEqual(result.replacements, 0)
        self.assertTrue(redact_with_audit("sk-abcdefghijkl").redacted)


class TestMaskSecret(unittest.TestCase):
    def test_keeps_last_four(self):
        self.assertEqual(mask_secret("sk-demo-key-12345"), "*************2345")

    def test_short_and_empty(self):
        self.assertEqual(mask_secret("abc"), "***")
        self.assertEqual(mask_secret(""), "")


class TestLogJson(unittest.TestCase):
    def test_emits_sorted_json_and_redacts(self):
        logger = logging.getLogger("agent_dashboard.tests.log_json")
        with self.assertLogs(logger, level="INFO") as captured:
            log_json(logger, "provider.created", provider_id="provider-1", api_key="sk-demo-key-12345")

        payload = json.loads(captured.records[0].getMessage())
        self.assertEqual(payload["event"], "provider.created")
        self.assertEqual(payload["provider_id"], "provider-1")
        self.assertEqual(payload["api_key"], "REDACTED")
        self.assertIn("ts", payload)


class TestJsonFieldRedaction(unittest.TestCase):
    def test_secret_fields_keep_json_valid(self):
        text = json.dumps({"apiKey": "plain-value", "name": "OpenAI", "maxTokens": 1000})
        payload = json.loads(redact(text))
        self.assertEqual(payload, {"apiKey": "REDACTED", "name": "OpenAI", "maxTokens": 1000})
