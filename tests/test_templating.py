import re

from mail_relay.templating import (
    DEFAULT_FROM_NAME,
    MAX_RANDOM_LENGTH,
    decode_from_name,
    random_string,
    render_subject,
)


def test_render_subject_fills_placeholders():
    subject = render_subject(
        "Hi {email} {randomID:7} {randomUppercase:5} {randomLowercase:4} {randomNumber:10}",
        "dest@example.com",
    )

    match = re.fullmatch(
        r"Hi dest@example\.com ([A-Za-z0-9]{7}) ([A-Z]{5}) ([a-z]{4}) ([0-9]{10})",
        subject,
    )
    assert match is not None


def test_render_subject_without_placeholders_is_unchanged():
    assert render_subject("Monthly report", "a@b.io") == "Monthly report"


def test_random_string_unknown_kind_uses_alphanumeric():
    value = random_string(12, "nope")
    assert len(value) == 12
    assert value.isalnum()


def test_decode_from_name_plain_and_encoded_word():
    assert decode_from_name(DEFAULT_FROM_NAME) == "Mailer <noreply@gmail.com>"
    assert decode_from_name("=?us-ascii?B?U2VuZGVy?=") == "Sender"


def test_decode_from_name_returns_input_when_not_base64():
    assert decode_from_name("John Doe") == "John Doe"


def test_recipient_is_inserted_literally():
    subject = render_subject("Hello {email} {randomNumber:3}", "{randomNumber:2000000}@x.io")

    assert subject.startswith("Hello {randomNumber:2000000}@x.io ")
    assert len(subject) == len("Hello {randomNumber:2000000}@x.io ") + 3


def test_random_length_is_capped():
    subject = render_subject("{randomID:100000}", "a@b.io")
    assert len(subject) == MAX_RANDOM_LENGTH
