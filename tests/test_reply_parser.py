from __future__ import annotations

from orthoiq.tools.reply_parser import parse_answers, parse_envelope, parse_numbered, refined_insight


def test_json_envelope() -> None:
    reply = 'Here you go:\n{"answers": ["Yes, load gradually.", {"answer": "No imaging needed."}]}'
    assert parse_answers(reply, 2) == ["Yes, load gradually.", "No imaging needed."]


def test_fenced_json_envelope() -> None:
    reply = '```json\n{"answers": ["A", "B"]}\n```'
    assert parse_envelope(reply) == ["A", "B"]


def test_numbered_list() -> None:
    reply = "1. Sleep is disturbed most nights\n2) Start with isometrics\n**3.** Review in two weeks"
    assert parse_numbered(reply) == [
        "Sleep is disturbed most nights",
        "Start with isometrics",
        "Review in two weeks",
    ]


def test_inline_numbers_do_not_split() -> None:
    reply = "Take 2. Then rest for 3. days before reloading."
    assert parse_answers(reply, 2) == [reply, reply]


def test_short_envelope_is_padded_with_whole_reply() -> None:
    reply = '{"answers": ["Only one"]}'
    assert parse_answers(reply, 3) == ["Only one", reply, reply]


def test_unstructured_reply_answers_every_question() -> None:
    assert parse_answers("  Keep walking daily.  ", 2) == ["Keep walking daily.", "Keep walking daily."]


def test_empty_answer_falls_back_to_reply() -> None:
    reply = '{"answers": ["", "Second"]}'
    assert parse_answers(reply, 2) == [reply, "Second"]


def test_refined_insight_is_first_sentence() -> None:
    assert refined_insight("Graded exposure is key. Everything else is secondary.") == "Graded exposure is key"


def test_refined_insight_truncates_long_sentences() -> None:
    insight = refined_insight("x" * 200)
    assert len(insight) == 150
    assert insight.endswith("...")
