#!/usr/bin/env python3
"""Unit tests for pane labels and name/count validation."""

import unittest

import ntm


class TestEncodeLabel(unittest.TestCase):
    """Test encode_label."""

    def test_initial_label(self):
        self.assertEqual(ntm.encode_label("demo", "cc", 1), "demo__cc_1")

    def test_added_label(self):
        self.assertEqual(ntm.encode_label("demo", ntm.Group.CODEX, 2, added=True),
                         "demo__cod_added_2")

    def test_unknown_group_rejected(self):
        with self.assertRaises(ValueError):
            ntm.encode_label("demo", "gpt", 1)


class TestLabelMatching(unittest.TestCase):
    """Test label_matches / label_group / decode_label."""

    def test_round_trip_for_every_group(self):
        for group in ntm.GROUP_ORDER:
            for added in (False, True):
                label = ntm.encode_label("proj", group, 3, added=added)
                self.assertTrue(ntm.label_matches(label, group))
                for other in ntm.GROUP_ORDER:
                    if other != group:
                        self.assertFalse(ntm.label_matches(label, other),
                                         f"{label} should not match {other.value}")
                address = ntm.decode_label(label)
                self.assertEqual(address, ntm.AgentAddress("proj", group, 3, added))

    def test_codex_label_does_not_match_claude(self):
        self.assertFalse(ntm.label_matches("demo__cod_1", "cc"))

    def test_label_group_of_unlabeled_pane(self):
        self.assertIsNone(ntm.label_group("shell"))
        self.assertIsNone(ntm.label_group("my-host.local"))

    def test_label_group(self):
        self.assertEqual(ntm.label_group("demo__gmi_4"), ntm.Group.GEMINI)

    def test_decode_rejects_free_text(self):
        self.assertIsNone(ntm.decode_label("shell"))
        self.assertIsNone(ntm.decode_label("demo__cc_"))
        self.assertIsNone(ntm.decode_label("demo__xx_1"))

    def test_decode_session_with_underscores(self):
        address = ntm.decode_label("my_proj__cc_added_12")
        self.assertEqual(address.session, "my_proj")
        self.assertEqual(address.ordinal, 12)
        self.assertTrue(address.added)

    def test_session_name_containing_marker_matches_everything(self):
        """Known collision: the marker in the session name matches every pane."""
        label = ntm.encode_label("x__cc", "cod", 1)
        self.assertTrue(ntm.label_matches(label, "cc"))
        self.assertEqual(ntm.marker_collisions("x__cc"), [ntm.Group.CLAUDE])


class TestValidation(unittest.TestCase):
    """Test session name and count validation."""

    def test_empty_session_name(self):
        with self.assertRaises(ntm.ValidationError) as ctx:
            ntm.validate_session_name("")
        self.assertIn("empty", str(ctx.exception))

    def test_reserved_characters(self):
        for name in ("a.b", "a:b"):
            with self.assertRaises(ntm.ValidationError) as ctx:
                ntm.validate_session_name(name)
            self.assertEqual(str(ctx.exception), "session name cannot contain ':' or '.'")

    def test_valid_session_name(self):
        self.assertEqual(ntm.validate_session_name("my-proj_2"), "my-proj_2")

    def test_counts(self):
        self.assertEqual(ntm.validate_count("0"), 0)
        self.assertEqual(ntm.validate_count("12"), 12)
        self.assertEqual(ntm.validate_count(3), 3)

    def test_invalid_counts(self):
        for value in ("-1", "1.5", "abc", "", "+2", -1, True):
            with self.assertRaises(ntm.ValidationError, msg=repr(value)):
                ntm.validate_count(value)

    def test_normalize_counts_fills_missing_groups(self):
        counts = ntm.normalize_counts({"cod": "2"})
        self.assertEqual(counts, {ntm.Group.CLAUDE: 0, ntm.Group.CODEX: 2, ntm.Group.GEMINI: 0})

    def test_normalize_counts_unknown_group(self):
        with self.assertRaises(ntm.ValidationError):
            ntm.normalize_counts({"gpt": 1})

    def test_format_counts(self):
        counts = ntm.normalize_counts({"cc": 2, "gmi": 1})
        self.assertEqual(ntm.format_counts(counts), "2x cc, 0x cod, 1x gmi")


if __name__ == "__main__":
    unittest.main()
