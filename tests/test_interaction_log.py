import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from interaction_log import InteractionLog, InteractionValidationError, make_interaction


class TestMakeInteraction(unittest.TestCase):
    def test_shape(self) -> None:
        event = make_interaction("cta", "click", {"x": 1}, 7)
        self.assertEqual(event["seq"], 7)
        self.assertEqual(event["component_id"], "cta")
        self.assertEqual(event["action_type"], "click")
        self.assertEqual(event["payload"], {"x": 1})
        self.assertTrue(event["event_id"])
        self.assertTrue(event["occurred_at"].endswith("Z"))

    def test_validation(self) -> None:
        cases = [
            (("", "click", {}), "INTERACTION_COMPONENT_ID_INVALID"),
            (("cta", " ", {}), "INTERACTION_ACTION_TYPE_INVALID"),
            (("cta", "click", ["a"]), "INTERACTION_PAYLOAD_INVALID"),
            (("cta", "click", {"when": object()}), "INTERACTION_PAYLOAD_INVALID"),
            (("cta", "click", {"ratio": float("nan")}), "INTERACTION_PAYLOAD_INVALID"),
        ]
        for args, code in cases:
            with self.subTest(code=code):
                with self.assertRaises(InteractionValidationError) as ctx:
                    make_interaction(*args, seq=1)
                self.assertEqual(ctx.exception.code, code)


class TestInteractionLog(unittest.TestCase):
    def test_sequence_and_filtering(self) -> None:
        log = InteractionLog()
        log.record("cta", "click")
        log.record("form", "submit", {"email": "a@example.com"})
        log.record("cta", "hover")
        self.assertEqual(len(log), 3)
        self.assertEqual([event["seq"] for event in log.events()], [1, 2, 3])
        self.assertEqual([event["action_type"] for event in log.events("cta")], ["click", "hover"])

    def test_rejected_event_does_not_consume_seq(self) -> None:
        log = InteractionLog()
        with self.assertRaises(InteractionValidationError):
            log.record("", "click")
        self.assertEqual(log.record("cta", "click")["seq"], 1)

    def test_subscribers_and_failures(self) -> None:
        log = InteractionLog()
        received = []

        def broken(event):
            raise RuntimeError("handler bug")

        log.subscribe(broken)
        log.subscribe(received.append, "submit")
        with self.assertLogs("pagekit.interactions", level="ERROR"):
            log.record("cta", "click")
        log.record("form", "submit", {"ok": True})
        self.assertEqual([event["seq"] for event in received], [2])

        self.assertTrue(log.unsubscribe(broken))
        self.assertFalse(log.unsubscribe(broken))

    def test_events_are_copies(self) -> None:
        log = InteractionLog()
        payload = {"items": [1]}
        log.record("cart", "add", payload)
        payload["items"].append(2)
        events = log.events()
        events[0]["payload"]["items"].append(3)
        self.assertEqual(log.events()[0]["payload"], {"items": [1]})
        log.clear()
        self.assertEqual(len(log), 0)


if __name__ == "__main__":
    unittest.main()
