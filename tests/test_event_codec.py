import json
import unittest


class TestEventCodec(unittest.TestCase):
    def test_envelopes_are_single_key(self) -> None:
        from ambient.contracts.v1 import analysis, project_root, system

        self.assertEqual(json.loads(project_root("/repo").to_json()), {"ProjectRoot": "/repo"})
        self.assertEqual(system("hi").to_wire(), {"System": "hi"})
        self.assertEqual(analysis("ok").to_wire(), {"Analysis": "ok"})

    def test_query_tag_travels_with_query_events(self) -> None:
        from ambient.contracts.v1 import QueryTag, decode_event, query_response

        ev = query_response("42").tagged(QueryTag(seq=3, own=True))
        wire = ev.to_wire()
        self.assertEqual(wire, {"QueryResponse": "42", "query": {"seq": 3, "own": True}})
        self.assertEqual(decode_event(ev.to_json()), ev)

    def test_only_query_events_may_be_tagged(self) -> None:
        from ambient.contracts.v1 import MalformedEvent, decode_event

        with self.assertRaises(MalformedEvent):
            decode_event('{"System": "x", "query": {"seq": 1, "own": false}}')

    def test_malformed_payloads(self) -> None:
        from ambient.contracts.v1 import MalformedEvent, decode_event

        bad = [
            "not json",
            "[1, 2]",
            "{}",
            '{"Unknown": "x"}',
            '{"System": "a", "Analysis": "b"}',
            '{"System": 5}',
            '{"System": "a", "extra": 1}',
        ]
        for raw in bad:
            with self.assertRaises(MalformedEvent, msg=raw):
                decode_event(raw)

    def test_decode_accepts_plain_envelopes(self) -> None:
        from ambient.contracts.v1 import decode_event

        ev = decode_event(b'{"UserQuery": "What does parse_config do?"}')
        self.assertEqual(ev.kind, "UserQuery")
        self.assertEqual(ev.text, "What does parse_config do?")
        self.assertIsNone(ev.query)

    def test_markdown_detection(self) -> None:
        from ambient.kernel.markdown import looks_like_markdown

        self.assertTrue(looks_like_markdown("# Findings\nnone"))
        self.assertTrue(looks_like_markdown("Use **bold** here"))
        self.assertTrue(looks_like_markdown("```python\nx = 1\n```"))
        self.assertTrue(looks_like_markdown("- first\n- second"))
        self.assertTrue(looks_like_markdown("| a | b |\n|---|---|"))
        self.assertFalse(looks_like_markdown("No syntax errors found."))
        self.assertFalse(looks_like_markdown("2 * 3 = 6"))


if __name__ == "__main__":
    unittest.main()
