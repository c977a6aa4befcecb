"""Unit tests for HTML/text cleaning before the model call."""
from pagepersona.transform.cleaner import (
    clean_text_for_llm,
    estimate_tokens,
    extract_text_from_html,
    looks_like_html,
    smart_truncate,
)

PAGE = """
<html><head><title>Hi</title><style>.a{color:red}</style><script>track()</script></head>
<body>
  <nav>Home | About</nav>
  <div class="cookie-banner">We use cookies</div>
  <article><h1>Octopus facts</h1><p>Octopuses have three hearts.</p><p>They are clever.</p></article>
  <footer>Footer links</footer>
</body></html>
"""


def test_looks_like_html():
    assert looks_like_html("<p>hi</p>")
    assert not looks_like_html("plain words only")


def test_extract_skips_non_content():
    text = extract_text_from_html(PAGE)
    assert "Octopuses have three hearts." in text
    assert "track()" not in text
    assert "Home | About" not in text
    assert "We use cookies" not in text
    assert "Footer links" not in text


def test_clean_removes_urls_emails_and_boilerplate():
    raw = "Read more at https://example.com/page now.\nMail me@example.com today.\nAll rights reserved 2024 Example Inc.\nReal sentence."
    cleaned = clean_text_for_llm(raw)
    assert "https://" not in cleaned.text
    assert "@" not in cleaned.text
    assert "rights reserved" not in cleaned.text
    assert "Real sentence." in cleaned.text
    assert not cleaned.was_truncated


def test_clean_collapses_whitespace():
    cleaned = clean_text_for_llm("one    two\n\n\n\n\nthree")
    assert cleaned.text == "one two\n\nthree"


def test_truncation_keeps_start_and_end():
    text = "START " + ("middle " * 2000) + " END"
    cleaned = clean_text_for_llm(text, max_chars=1000)
    assert cleaned.was_truncated
    assert len(cleaned.text) <= 1000
    assert cleaned.text.startswith("START")
    assert cleaned.text.endswith("END")
    assert "[...]" in cleaned.text
    assert cleaned.original_length == len(text)


def test_smart_truncate_noop_when_short():
    assert smart_truncate("short", 100) == "short"


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
