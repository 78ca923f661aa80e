"""
Unit tests for TopicDispatcher.
"""

from unittest.mock import MagicMock

from neolink_mqtt.correlation import get_correlation_id
from neolink_mqtt.mqtt.dispatcher import TopicDispatcher


class TestTopicDispatcher:
    """Tests for exact-topic routing"""

    def test_dispatch_decodes_utf8(self):
        """Test bytes payloads reach handlers as text"""
        dispatcher = TopicDispatcher()
        handler = MagicMock()
        dispatcher.register("neolink/Cam/status/motion", handler)

        assert dispatcher.dispatch("neolink/Cam/status/motion", b"on") == 1
        handler.assert_called_once_with("on")

    def test_exact_match_only(self):
        """Test no prefix or wildcard matching"""
        dispatcher = TopicDispatcher()
        handler = MagicMock()
        dispatcher.register("neolink/Cam/status", handler)

        assert dispatcher.dispatch("neolink/Cam/status/motion", b"on") == 0
        handler.assert_not_called()

    def test_unknown_topic_ignored(self):
        """Test a topic with no handler is a no-op"""
        assert TopicDispatcher().dispatch("neolink/Other/status", b"connected") == 0

    def test_register_replaces_by_default(self):
        """Test last registration wins"""
        dispatcher = TopicDispatcher()
        first, second = MagicMock(), MagicMock()
        dispatcher.register("t", first)
        dispatcher.register("t", second)

        _ = dispatcher.dispatch("t", b"x")
        first.assert_not_called()
        second.assert_called_once_with("x")

    def test_appended_handlers_run_in_order(self):
        """Test replace=False appends and handlers fire in registration order"""
        dispatcher = TopicDispatcher()
        calls: list[str] = []
        dispatcher.register("t", lambda p: calls.append(f"a:{p}"))
        dispatcher.register("t", lambda p: calls.append(f"b:{p}"), replace=False)

        assert dispatcher.dispatch("t", "x") == 2
        assert calls == ["a:x", "b:x"]

    def test_failing_handler_does_not_stop_others(self):
        """Test a raising handler is logged and the next one still runs"""
        dispatcher = TopicDispatcher()
        broken = MagicMock(side_effect=RuntimeError("boom"))
        healthy = MagicMock()
        dispatcher.register("t", broken)
        dispatcher.register("t", healthy, replace=False)

        assert dispatcher.dispatch("t", b"x") == 2
        healthy.assert_called_once_with("x")

    def test_invalid_utf8_replaced(self):
        """Test undecodable bytes do not raise"""
        dispatcher = TopicDispatcher()
        handler = MagicMock()
        dispatcher.register("t", handler)

        _ = dispatcher.dispatch("t", b"\xffon")
        handler.assert_called_once_with("�on")

    def test_none_payload_is_empty_text(self):
        """Test an empty message arrives as an empty string"""
        dispatcher = TopicDispatcher()
        handler = MagicMock()
        dispatcher.register("t", handler)

        _ = dispatcher.dispatch("t", None)
        handler.assert_called_once_with("")

    def test_dispatch_sets_correlation_id(self):
        """Test each dispatch runs with its own correlation id"""
        dispatcher = TopicDispatcher()
        seen: list[str | None] = []
        dispatcher.register("t", lambda _p: seen.append(get_correlation_id()))

        _ = dispatcher.dispatch("t", b"1")
        _ = dispatcher.dispatch("t", b"2")
        assert seen[0] is not None
        assert seen[0] != seen[1]

    def test_remove_and_clear(self):
        """Test remove() reports whether the topic existed, clear() empties"""
        dispatcher = TopicDispatcher()
        dispatcher.register("a", MagicMock())
        dispatcher.register("b", MagicMock())

        assert dispatcher.remove("a") is True
        assert dispatcher.remove("a") is False
        assert "b" in dispatcher
        dispatcher.clear()
        assert len(dispatcher) == 0
