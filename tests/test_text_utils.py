from text_utils import (
    COMPATIBILITY,
    DAILY,
    NOT_SPECIFIED,
    PERSONAL,
    SOLO,
    Envelope,
    ExtractionConfig,
    MarkerRule,
    StarterParagraphRule,
    clean_text_for_card,
    extract_envelope,
    extract_pillars,
    split_headline,
    split_paragraphs,
    strip_markdown,
)


def test_marker_in_bold_is_extracted():
    raw = (
        "### Four Pillars\n- Year: ...\n\n"
        "**Shareable Summary**: A bold individual thrives today.\n\n"
        "Other trailing text"
    )
    envelope = extract_envelope(raw, SOLO)

    assert envelope.shareable_summary == "A bold individual thrives today."
    assert "Four Pillars" in envelope.primary_content
    assert "Other trailing text" in envelope.primary_content
    assert "A bold individual thrives today." not in envelope.primary_content
    assert "Shareable Summary" not in envelope.primary_content


def test_marker_as_heading_takes_next_line():
    raw = "Intro paragraph.\n\n## Shareable Summary\nLet patience lead.\n\nClosing words."
    envelope = extract_envelope(raw, DAILY)

    assert envelope.shareable_summary == "Let patience lead."
    assert envelope.primary_content == "Intro paragraph.\n\nClosing words."


def test_marker_is_case_insensitive_and_localised():
    assert extract_envelope("Body.\n\nshareable summary: Stay calm.", PERSONAL).shareable_summary == "Stay calm."
    assert extract_envelope("正文。\n\n分享摘要：让水引导你。", DAILY).shareable_summary == "让水引导你。"


def test_marker_must_open_a_line():
    raw = "We never print the words Shareable Summary: inline like this.\n\nA calm achiever."
    envelope = extract_envelope(raw, SOLO)

    assert envelope.shareable_summary == "A calm achiever."
    assert "inline like this" in envelope.primary_content


def test_empty_marker_falls_through():
    assert MarkerRule(["Shareable Summary"]).apply("Text\n\nShareable Summary:\n\nMore") is None


def test_empty_marker_with_default_stops_extraction():
    envelope = MarkerRule(["Shareable Summary"], "Default.").apply("Text\n\nShareable Summary:\n\nMore")

    assert envelope.shareable_summary == "Default."
    assert envelope.primary_content == "Text\n\nShareable Summary:\n\nMore"


def test_empty_marker_does_not_promote_next_paragraph():
    raw = "Body.\n\nShareable Summary:\n\nA calm achiever."
    envelope = extract_envelope(raw, SOLO)

    assert envelope.shareable_summary == SOLO.default_summary
    assert envelope.primary_content == raw


def test_trailing_marker_without_content_uses_default():
    raw = "Body text.\n\nShareable Summary:"
    envelope = extract_envelope(raw, SOLO)

    assert envelope.shareable_summary == SOLO.default_summary
    assert envelope.primary_content == raw


def test_marker_summary_repeated_in_body_is_rejected():
    raw = "Stay calm.\n\nShareable Summary: Stay calm."
    assert MarkerRule(["Shareable Summary"]).apply(raw) is None


def test_starter_rule_picks_last_matching_paragraph():
    raw = "A first opener.\n\nMiddle analysis.\n\nAn adaptable spirit with quiet strength."
    envelope = extract_envelope(raw, SOLO)

    assert envelope.shareable_summary == "An adaptable spirit with quiet strength."
    assert envelope.primary_content == "A first opener.\n\nMiddle analysis."


def test_starter_rule_ignores_emphasis():
    raw = "Details about both charts.\n\n**You and your partner show deep trust.**"
    envelope = extract_envelope(raw, COMPATIBILITY)

    assert envelope.shareable_summary == "You and your partner show deep trust."
    assert envelope.primary_content == "Details about both charts."


def test_single_paragraph_uses_default():
    raw = "A single paragraph that happens to start with a starter."
    envelope = extract_envelope(raw, SOLO)

    assert envelope.shareable_summary == SOLO.default_summary
    assert envelope.primary_content == raw


def test_no_starters_configured():
    assert StarterParagraphRule(()).apply("One.\n\nTwo.") is None


def test_marker_can_be_disabled():
    config = ExtractionConfig(
        marker_labels=("Shareable Summary",),
        starters=(),
        default_summary="Default.",
        use_marker=False,
    )
    envelope = extract_envelope("Body.\n\nShareable Summary: Ignored.", config)

    assert envelope.shareable_summary == "Default."
    assert envelope.primary_content == "Body.\n\nShareable Summary: Ignored."


def test_extraction_is_deterministic():
    raw = "Reading.\n\nA steady builder."
    assert extract_envelope(raw, SOLO) == extract_envelope(raw, SOLO)


def test_empty_input_uses_default():
    envelope = extract_envelope("", DAILY)
    assert envelope.primary_content == ""
    assert envelope.shareable_summary == DAILY.default_summary


def test_envelope_dict_round_trip():
    envelope = Envelope("Body", "Summary", {"pillar": "Yang Fire"})
    assert Envelope.from_dict(envelope.to_dict()) == envelope


def test_split_paragraphs_drops_blank_runs():
    assert split_paragraphs("one\n\n \n\ntwo\n   \nthree") == ["one", "two", "three"]


def test_split_headline_strips_known_prefix():
    import re

    headline, rest = split_headline(
        "Today's pillar is: **Yang Fire (丙) over Xu (戌)**\nThe day is bright.",
        [re.compile(r"^Today's pillar is:\s*")],
    )
    assert headline == "Yang Fire (丙) over Xu (戌)"
    assert rest == "The day is bright."


def test_split_headline_default():
    assert split_headline("", default="Unknown") == ("Unknown", "")


def test_extract_pillars():
    text = "Year Pillar: Geng Wu\nMonth Pillar: **Xin Si**\nDay Pillar: Jia Zi\n"
    pillars = extract_pillars(text)

    assert pillars["year_pillar"] == "Geng Wu"
    assert pillars["month_pillar"] == "Xin Si"
    assert pillars["day_pillar"] == "Jia Zi"
    assert pillars["hour_pillar"] == NOT_SPECIFIED


def test_strip_markdown():
    assert strip_markdown("**Bold** and *soft* and __under__") == "Bold and soft and under"


def test_clean_text_for_card():
    text = "## Heading\n\n- **Point** one 🔥\n> quoted\n\n\n\n`code`"
    cleaned = clean_text_for_card(text)

    assert "Heading" in cleaned
    assert "· Point one" in cleaned
    assert "🔥" not in cleaned
    assert "quoted" in cleaned
    assert "\n\n\n" not in cleaned
    assert "code" in cleaned and "`" not in cleaned
