"""Request parsing and variable rendering tests."""

from __future__ import annotations

import json
import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from tfexec.errors import ConfigurationError
from tfexec.models import ExecutionRequest, VariableKind, VariableValue, parse_batch
from tfexec.serialization import serialize_batch

RECORD = {
    "id": "123456789012",
    "name": "acct-1",
    "version": "v1.0.0",
    "log_level": "INFO",
    "variables": {"enabled": True, "count": 3},
}


class VariableValueTests(unittest.TestCase):
    def test_tags(self) -> None:
        self.assertIs(VariableValue.from_raw("b", True).kind, VariableKind.BOOL)
        self.assertIs(VariableValue.from_raw("i", 3).kind, VariableKind.INTEGER)
        self.assertIs(VariableValue.from_raw("f", 1.5).kind, VariableKind.FLOAT)
        self.assertIs(VariableValue.from_raw("s", "x").kind, VariableKind.STRING)
        self.assertIs(VariableValue.from_raw("o", {"a": 1}).kind, VariableKind.OBJECT)

    def test_rendering_rules(self) -> None:
        self.assertEqual(VariableValue.from_raw("b", True).render(), "true")
        self.assertEqual(VariableValue.from_raw("b", False).render(), "false")
        self.assertEqual(VariableValue.from_raw("i", 3).render(), "3")
        self.assertEqual(VariableValue.from_raw("i", -42).render(), "-42")
        self.assertEqual(VariableValue.from_raw("f", 2.5).render(), "2.500000")
        self.assertEqual(VariableValue.from_raw("s", "us-east-1").render(), "us-east-1")
        self.assertEqual(
            VariableValue.from_raw("o", {"tags": {"env": "prod"}, "a": 1}).render(),
            '{"a":1,"tags":{"env":"prod"}}',
        )

    def test_unsupported_types_are_rejected(self) -> None:
        for raw in ([1, 2], None):
            with self.assertRaises(ConfigurationError):
                VariableValue.from_raw("v", raw)


class ExecutionRequestTests(unittest.TestCase):
    def test_from_dict_maps_wire_fields(self) -> None:
        req = ExecutionRequest.from_dict(RECORD)
        self.assertEqual(req.account_id, "123456789012")
        self.assertEqual(req.name, "acct-1")
        self.assertEqual(req.source_version, "v1.0.0")
        self.assertEqual(req.log_verbosity, "INFO")
        self.assertEqual(req.variables, {"enabled": True, "count": 3})

    def test_to_dict_round_trips_unchanged(self) -> None:
        self.assertEqual(ExecutionRequest.from_dict(RECORD).to_dict(), RECORD)

    def test_name_must_be_a_single_path_component(self) -> None:
        for name in ("", "../etc", "a/b", ".."):
            with self.assertRaises(ConfigurationError, msg=name):
                ExecutionRequest.from_dict({**RECORD, "name": name})

    def test_variables_must_be_an_object(self) -> None:
        with self.assertRaises(ConfigurationError):
            ExecutionRequest.from_dict({**RECORD, "variables": ["a"]})


class ParseBatchTests(unittest.TestCase):
    def test_accepts_list_string_and_wrapped_forms(self) -> None:
        for payload in ([RECORD], json.dumps([RECORD]), json.dumps([RECORD]).encode(), {"requests": [RECORD]}):
            requests = parse_batch(payload)
            self.assertEqual([r.name for r in requests], ["acct-1"])

    def test_empty_inputs(self) -> None:
        self.assertEqual(parse_batch([]), [])
        self.assertEqual(parse_batch(""), [])
        self.assertEqual(parse_batch(None), [])

    def test_malformed_top_level_raises(self) -> None:
        for payload in ("{not json", {"id": "x"}, 42):
            with self.assertRaises(ConfigurationError):
                parse_batch(payload)

    def test_bad_records_are_rejected_individually(self) -> None:
        requests = parse_batch([
            RECORD,
            {**RECORD, "name": "acct/2"},
            "not-an-object",
            {**RECORD, "name": "acct-4", "variables": ["a"]},
        ])
        self.assertEqual([r.name for r in requests], ["acct-1", "acct/2", "request[2]", "acct-4"])
        self.assertEqual([r.valid for r in requests], [True, False, False, False])
        self.assertIn("not a valid directory name", requests[1].problem)
        self.assertIn("must be an object", requests[2].problem)
        self.assertEqual(requests[2].to_dict(), "not-an-object")

    def test_forwarded_records_are_unchanged(self) -> None:
        record = {"id": 123456789012, "name": " acct-1 ", "version": None, "variables": {"n": 1}, "extra": True}
        (req,) = parse_batch([record])
        self.assertEqual(req.account_id, "123456789012")
        self.assertEqual(req.name, "acct-1")
        self.assertEqual(req.to_dict(), record)
        self.assertEqual(json.loads(serialize_batch([req])), [record])

    def test_serialized_overflow_parses_back_identically(self) -> None:
        requests = parse_batch([RECORD, {**RECORD, "name": "acct-2"}])
        self.assertEqual(parse_batch(serialize_batch(requests)), requests)


if __name__ == "__main__":
    unittest.main()
