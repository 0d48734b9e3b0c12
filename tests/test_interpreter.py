"""Tests for reply interpretation."""

import unittest

import helpers  # noqa: F401

from family_events.interpreter import Confidence, ReplyAction, interpret


class TestInterpret(unittest.TestCase):
    def assertReply(self, text, action, confidence):
        result = interpret(text)
        self.assertEqual(result.action, action, text)
        self.assertEqual(result.confidence, confidence, text)

    def test_exact_tokens_are_high_confidence(self):
        for text in ("yes", "Y", "ok", " Yes! ", "👍", "1"):
            self.assertReply(text, ReplyAction.APPROVED, Confidence.HIGH)
        for text in ("no", "NO.", "nope", "0", "skip"):
            self.assertReply(text, ReplyAction.REJECTED, Confidence.HIGH)

    def test_keywords_in_sentences_are_medium(self):
        self.assertReply("Yes please, sounds fun", ReplyAction.APPROVED, Confidence.MEDIUM)
        self.assertReply("Sounds good to me", ReplyAction.APPROVED, Confidence.MEDIUM)
        self.assertReply("Not interested, thanks", ReplyAction.REJECTED, Confidence.MEDIUM)

    def test_rejection_phrase_suppresses_approval_word(self):
        self.assertReply("no thanks, ok?", ReplyAction.REJECTED, Confidence.MEDIUM)

    def test_payment(self):
        self.assertReply("PAY", ReplyAction.PAYMENT_CONFIRMED, Confidence.HIGH)
        self.assertReply("I paid just now", ReplyAction.PAYMENT_CONFIRMED, Confidence.HIGH)
        self.assertReply("done", ReplyAction.PAYMENT_CONFIRMED, Confidence.HIGH)

    def test_cancel(self):
        self.assertReply("cancel", ReplyAction.CANCELLED, Confidence.HIGH)
        self.assertReply("please cancel it", ReplyAction.CANCELLED, Confidence.HIGH)
        self.assertReply("yes cancel", ReplyAction.UNCLEAR, Confidence.LOW)

    def test_hedging_and_conflicts_are_unclear(self):
        for text in ("maybe", "Yes but I'm not sure", "yes no", "what time is it?", "?", "", "   "):
            self.assertReply(text, ReplyAction.UNCLEAR, Confidence.LOW)

    def test_whole_word_matching(self):
        # "book" contains "ok" and "know" contains "no"
        self.assertReply("I know the place", ReplyAction.UNCLEAR, Confidence.LOW)
        self.assertReply("please book it", ReplyAction.APPROVED, Confidence.MEDIUM)

    def test_non_text_input(self):
        self.assertReply(None, ReplyAction.UNCLEAR, Confidence.LOW)
        self.assertReply(42, ReplyAction.UNCLEAR, Confidence.LOW)

    def test_smart_apostrophes(self):
        self.assertReply("let’s do it", ReplyAction.APPROVED, Confidence.MEDIUM)

    def test_pure_function(self):
        self.assertEqual(interpret("yes"), interpret("yes"))
        self.assertTrue(interpret("yes").is_decisive)
        self.assertFalse(interpret("hmm").is_decisive)


if __name__ == "__main__":
    unittest.main()
