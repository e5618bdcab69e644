"""Tests for notification content preprocessing."""

from finwise.parsers.preprocess import build_model_input, extract_important_lines, preprocess, strip_markup

ICICI_EMAIL = """
<html><head><style>p { color: red; }</style><script>track();</script></head>
<body>
<p>Dear Customer,</p>
<p>Your ICICI Bank Credit Card XX9006 has been used for a transaction of INR 15.00
on Nov 16, 2025 at 10:07:13. Info: UPI-532029754318-PARAS SI.</p>
<p>The available credit limit on your card is Rs. 50,000.00.</p>
<p>In case of any issue, please contact us.</p>
</body></html>
"""


class TestStripMarkup:
    """Test HTML removal."""

    def test_removes_script_and_style(self):
        text = strip_markup(ICICI_EMAIL)
        assert "track()" not in text
        assert "color: red" not in text
        assert "<" not in text

    def test_decodes_entities(self):
        assert strip_markup("Rs&nbsp;500 paid to A&amp;B Stores") == "Rs 500 paid to A&B Stores"

    def test_block_tags_become_lines(self):
        assert strip_markup("<div>first</div><div>second</div>").split("\n") == ["first", "second"]

    def test_collapses_whitespace(self):
        assert strip_markup("Rs   500 \t debited") == "Rs 500 debited"


class TestImportantLines:
    """Test selection of transaction lines."""

    def test_skips_greeting_and_stops_at_boilerplate(self):
        lines = extract_important_lines(ICICI_EMAIL)
        assert len(lines) == 2
        assert lines[0].startswith("Your ICICI Bank Credit Card XX9006")
        assert "Info: UPI-532029754318-PARAS SI." in lines[1]
        assert not any("available credit" in line.lower() for line in lines)

    def test_keeps_at_most_three_lines(self):
        body = "\n".join(f"Line {i} Rs {i}00 debited" for i in range(6))
        assert len(extract_important_lines(body)) == 3

    def test_greetings_are_case_insensitive(self):
        lines = extract_important_lines("Hello,\nHI there\nRs 200 debited from A/c XX1234")
        assert lines == ["Rs 200 debited from A/c XX1234"]

    def test_greeting_word_inside_sentence_is_kept(self):
        lines = extract_important_lines("Highway toll Rs 95 paid via FASTag")
        assert lines == ["Highway toll Rs 95 paid via FASTag"]


class TestPreprocess:
    """Test the preprocess entry point."""

    def test_plain_sms_passes_through(self):
        sms = "Rs 1,400.00 spent using ICICI Bank Card XX2008 on 25-Sep-25 at ZOMATO."
        assert preprocess(sms) == sms

    def test_returns_snippet_when_nothing_survives(self):
        body = "Dear Customer,\nIf you did not make this transaction, call us."
        snippet = "Rs 500 debited from A/c XX1234"
        assert preprocess(body, snippet) == snippet

    def test_returns_empty_string_without_snippet(self):
        assert preprocess("<p>Dear Customer,</p>") == ""

    def test_subject_is_prepended_for_model_input(self):
        content = build_model_input("Rs 500 debited from A/c XX1234", subject=" Debit alert ")
        assert content == "Subject: Debit alert\nRs 500 debited from A/c XX1234"
