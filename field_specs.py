"""Field specs for every voice-enabled input."""

from __future__ import annotations

from models import FieldKind, FieldSpec

NAME = FieldSpec(
    kind=FieldKind.NAME,
    keys=("fullName",),
    prompt_template=(
        "Extract the person's full name from this Hindi/English speech.\n\n"
        'Speech: "{transcript}"'
    ),
)

PHONE = FieldSpec(
    kind=FieldKind.PHONE,
    keys=("mobileNumber",),
    prompt_template=(
        "Extract the mobile phone number from this Hindi/English speech.\n\n"
        'Speech: "{transcript}"'
    ),
    instructions=(
        "Return the number as 10 digits with no spaces or country code",
        "Convert spelled-out digits to numerals",
    ),
)

EMAIL = FieldSpec(
    kind=FieldKind.EMAIL,
    keys=("email",),
    prompt_template=(
        "Extract the email address from this Hindi/English speech.\n\n"
        'Speech: "{transcript}"'
    ),
    instructions=(
        'Turn spoken "at the rate" / "at" into @ and "dot" into .',
        "Return the address in lowercase without spaces",
    ),
)

PASSWORD = FieldSpec(
    kind=FieldKind.PASSWORD,
    keys=("password",),
    prompt_template=(
        "Extract the password from this Hindi/English speech.\n\n"
        'Speech: "{transcript}"'
    ),
    instructions=(
        "Extract ONLY the password part of the speech",
        'Remove words like "my password is", "password", "मेरा पासवर्ड है"',
        "Keep all characters, numbers and symbols exactly as spoken",
        "If numbers are spelled out, convert them to digits",
    ),
)

LOCATION = FieldSpec(
    kind=FieldKind.LOCATION,
    keys=("state", "district"),
    required_keys=("state",),
    prompt_template=(
        "Extract the Indian state and district from this Hindi/English speech.\n\n"
        'Speech: "{transcript}"'
    ),
    instructions=(
        "Use the official English spelling of the state and district",
        "Use null for the district if it was not mentioned",
    ),
)

BY_KIND = {
    spec.kind: spec
    for spec in (NAME, PHONE, EMAIL, PASSWORD, LOCATION)
}


def freeform_answer_spec(question: str) -> FieldSpec:
    """Spec for a free-form answer to one case question."""
    # braces in the question would break str.format on the template
    safe_question = question.replace("{", "{{").replace("}", "}}")
    return FieldSpec(
        kind=FieldKind.FREEFORM_ANSWER,
        keys=("answer",),
        prompt_template=(
            f"The user was asked: \"{safe_question}\"\n"
            "Summarise their spoken answer in clear, complete sentences in the language they used.\n\n"
            'Speech: "{transcript}"'
        ),
        instructions=(
            "Keep every fact the user mentioned, such as names, dates, places and amounts",
            "Do not add advice or information the user did not give",
        ),
    )
