"""Tests for the sudo prompt responder."""

from vscan.remote.prompt import PromptAction, PromptResponder, PromptState, strip_prompts


def test_plain_output_needs_no_answer():
    responder = PromptResponder()
    assert responder.feed("total 0\n") is PromptAction.NONE
    assert responder.state is PromptState.AWAITING_PROMPT


def test_prompt_split_across_chunks():
    responder = PromptResponder()
    assert responder.feed("[sudo] password ") is PromptAction.NONE
    assert responder.feed("for scan: ") is PromptAction.RESPOND
    assert responder.attempts == 1
    assert responder.state is PromptState.RESPONDED


def test_prompt_answered_at_most_three_times():
    responder = PromptResponder(max_attempts=3)
    actions = [responder.feed("Sorry, try again.\n[sudo] password for scan: ") for _ in range(4)]
    assert actions == [PromptAction.RESPOND] * 3 + [PromptAction.FAIL]
    assert responder.state is PromptState.EXHAUSTED
    assert responder.feed("anything") is PromptAction.FAIL


def test_prompt_word_inside_output_is_ignored():
    responder = PromptResponder()
    assert responder.feed("password: changed\n") is PromptAction.NONE


def test_strip_prompts_removes_answered_prompts():
    raw = "[sudo] password for scan: \r\nSorry, try again.\r\n[sudo] password for scan: \r\nVersion: 0.50.1\r\n"
    answered = ["[sudo] password for scan:", "[sudo] password for scan:"]
    assert strip_prompts(raw, answered) == "Version: 0.50.1\n"


def test_strip_prompts_without_answers_only_normalizes_line_endings():
    raw = "[sudo] password for scan: \r\nVersion: 0.50.1\r\n"
    assert strip_prompts(raw) == "[sudo] password for scan: \nVersion: 0.50.1\n"


def test_prompt_text_inside_a_line_is_not_a_prompt():
    responder = PromptResponder()
    line = '      "Description": "Allows an attacker to reset the password for any user. Note:'
    assert responder.feed(line) is PromptAction.NONE
    assert responder.answered == []


def test_strip_prompts_keeps_password_mentions_in_output():
    body = '{"Description": "Allows an attacker to reset the password for any user. Note: fixed in 1.1"}\n'
    raw = "[sudo] password for scan: \n" + body
    assert strip_prompts(raw, ["[sudo] password for scan:"]) == body


def test_answered_prompts_are_recorded():
    responder = PromptResponder()
    responder.feed("Password: ")
    assert responder.answered == ["Password:"]
