import json
import unittest
from unittest import mock


def _response(status: int = 200, *, body=None, lines=None, text: str = ""):
    resp = mock.MagicMock()
    resp.status_code = status
    resp.text = text
    if isinstance(body, Exception):
        resp.json.side_effect = body
    else:
        resp.json.return_value = body
    resp.iter_lines.return_value = iter(lines or [])
    return resp


class TestOpenAICompatClient(unittest.TestCase):
    def _client(self, resp=None, *, side_effect=None, stream: bool = False):
        from ambient.ports.model import OpenAICompatClient

        http = mock.MagicMock()
        if side_effect is not None:
            http.post.side_effect = side_effect
        else:
            http.post.return_value = resp
        return OpenAICompatClient("http://localhost:11434/v1/", "gpt-oss:20b", stream=stream, session=http), http

    def test_non_streaming_completion(self) -> None:
        resp = _response(body={"choices": [{"message": {"role": "assistant", "content": "All good."}}]})
        client, http = self._client(resp)
        self.assertEqual(client.complete("review this", 30), "All good.")

        args, kwargs = http.post.call_args
        self.assertEqual(args[0], "http://localhost:11434/v1/chat/completions")
        self.assertEqual(kwargs["json"]["model"], "gpt-oss:20b")
        self.assertEqual(kwargs["json"]["messages"], [{"role": "user", "content": "review this"}])
        self.assertFalse(kwargs["json"]["stream"])
        self.assertEqual(kwargs["timeout"], 30)
        resp.close.assert_called_once()

    def test_streaming_completion_joins_deltas(self) -> None:
        chunk = lambda t: "data: " + json.dumps({"choices": [{"delta": {"content": t}}]})
        resp = _response(lines=[chunk("Hel"), "", ": keep-alive", chunk("lo"), "data: [DONE]", chunk("ignored")])
        client, http = self._client(resp, stream=True)
        self.assertEqual(client.complete("hi", 30), "Hello")
        self.assertTrue(http.post.call_args.kwargs["stream"])

    def test_timeout(self) -> None:
        import requests

        from ambient.ports.model import ModelTimeout

        client, _ = self._client(side_effect=requests.Timeout("read timed out"))
        with self.assertRaises(ModelTimeout):
            client.complete("x", 1)

    def test_unreachable(self) -> None:
        import requests

        from ambient.ports.model import ModelUnreachable

        client, _ = self._client(side_effect=requests.ConnectionError("refused"))
        with self.assertRaises(ModelUnreachable):
            client.complete("x", 1)

    def test_http_error_is_malformed(self) -> None:
        from ambient.ports.model import ModelMalformed

        resp = _response(500, text="model not found")
        client, _ = self._client(resp)
        with self.assertRaises(ModelMalformed) as cm:
            client.complete("x", 1)
        self.assertIn("500", str(cm.exception))
        resp.close.assert_called_once()

    def test_unexpected_shapes_are_malformed(self) -> None:
        from ambient.ports.model import ModelMalformed

        for body in ({"choices": []}, {"nope": 1}, ValueError("not json"), {"choices": [{"message": {"content": 5}}]}):
            client, _ = self._client(_response(body=body))
            with self.assertRaises(ModelMalformed, msg=repr(body)):
                client.complete("x", 1)

        client, _ = self._client(_response(lines=["data: {broken"]), stream=True)
        with self.assertRaises(ModelMalformed):
            client.complete("x", 1)
        client, _ = self._client(_response(lines=[]), stream=True)
        with self.assertRaises(ModelMalformed):
            client.complete("x", 1)

    def test_default_session_is_a_requests_session(self) -> None:
        with mock.patch("ambient.ports.model.client.requests.Session") as session_cls:
            from ambient.ports.model import OpenAICompatClient

            client = OpenAICompatClient()
            session_cls.assert_called_once_with()
            self.assertEqual(client.endpoint, "http://localhost:11434/v1/chat/completions")


if __name__ == "__main__":
    unittest.main()
