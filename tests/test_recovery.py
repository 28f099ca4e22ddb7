from __future__ import annotations

import json

import allure
import pytest

from gemini_cli_job.recovery import RecoveryMode, recover_job_response

pytestmark = [
    allure.epic("Job Runtime"),
    allure.feature("Output Recovery"),
]


def test_whole_text_json_with_result_and_memory() -> None:
    recovered = recover_job_response('{"jobResult":"Done","jobMemory":{"v":"1.2.0"}}')

    assert recovered.recovery_mode is RecoveryMode.WHOLE_TEXT_JSON
    assert recovered.job_result == "Done"
    assert recovered.job_memory_updates == {"v": "1.2.0"}


def test_whole_text_json_is_trimmed_before_parsing() -> None:
    recovered = recover_job_response('\n\n  {"jobResult": "Done"}  \n')

    assert recovered.recovery_mode is RecoveryMode.WHOLE_TEXT_JSON
    assert recovered.job_result == "Done"


def test_whole_text_json_is_accepted_without_job_result() -> None:
    recovered = recover_job_response('{"status": "ok", "jobMemory": {"seen": true}}')

    assert recovered.recovery_mode is RecoveryMode.WHOLE_TEXT_JSON
    assert recovered.job_result is None
    assert not recovered.has_job_result
    assert recovered.job_memory_updates == {"seen": True}
    assert recovered.payload == {"status": "ok", "jobMemory": {"seen": True}}


def test_embedded_object_between_prose_lines() -> None:
    recovered = recover_job_response(
        'Here is your report:\n{"jobResult":"Report text"}\nEnd of output.',
    )

    assert recovered.recovery_mode is RecoveryMode.EMBEDDED_JSON
    assert recovered.job_result == "Report text"
    assert recovered.job_memory_updates == {}


def test_embedded_object_with_one_level_of_nesting() -> None:
    recovered = recover_job_response(
        'Report follows {"jobResult": "R", "jobMemory": {"k": 1}} and that is all.',
    )

    assert recovered.recovery_mode is RecoveryMode.EMBEDDED_JSON
    assert recovered.job_result == "R"
    assert recovered.job_memory_updates == {"k": 1}


def test_fenced_json_block_with_deep_nesting() -> None:
    text = (
        "Result:\n"
        "```json\n"
        '{"jobResult": "Fenced", "jobMemory": {"x": {"y": {"z": 1}}}}\n'
        "```\n"
        "Thanks {user}"
    )

    recovered = recover_job_response(text)

    assert recovered.recovery_mode is RecoveryMode.EMBEDDED_JSON
    assert recovered.job_result == "Fenced"
    assert recovered.job_memory_updates == {"x": {"y": {"z": 1}}}


def test_line_scan_recovers_object_next_to_stray_braces() -> None:
    text = 'Progress {50%}\n{"jobResult": "R", "jobMemory": {"a": {"b": 1}}}\nbye'

    recovered = recover_job_response(text)

    assert recovered.recovery_mode is RecoveryMode.LINE_JSON
    assert recovered.job_result == "R"
    assert recovered.job_memory_updates == {"a": {"b": 1}}


def test_multiline_deeply_nested_object_is_found_by_decoder_scan() -> None:
    text = 'Note {draft}\n{\n  "jobResult": "Final",\n  "jobMemory": {"a": {"b": 1}}\n}'

    recovered = recover_job_response(text)

    assert recovered.recovery_mode is RecoveryMode.EMBEDDED_JSON
    assert recovered.job_result == "Final"
    assert recovered.job_memory_updates == {"a": {"b": 1}}


@pytest.mark.parametrize(
    "text",
    [
        "Plain prose with no structure at all.",
        "  leading and trailing whitespace is kept\n",
        "",
        "[1, 2, 3]",
        "42",
        '"just a string"',
        'Prefix {"jobResult": 5} suffix',
        'Prefix {"jobResult": ""} suffix',
        "Broken {json here",
    ],
)
def test_plain_text_fallback_returns_raw_text_untouched(text: str) -> None:
    recovered = recover_job_response(text)

    assert recovered.recovery_mode is RecoveryMode.PLAIN_TEXT_FALLBACK
    assert recovered.job_result == text
    assert recovered.job_memory_updates == {}
    assert recovered.payload is None


def test_non_object_job_memory_yields_empty_updates() -> None:
    recovered = recover_job_response('{"jobResult": "a", "jobMemory": [1, 2]}')

    assert recovered.job_result == "a"
    assert recovered.job_memory_updates == {}


def test_job_memory_values_are_passed_through() -> None:
    memory = {"list": [1, "two"], "nested": {"n": None}, "flag": False, "num": 1.5}

    recovered = recover_job_response(json.dumps({"jobResult": "a", "jobMemory": memory}))

    assert recovered.job_memory_updates == memory


def test_whole_text_non_string_job_result_is_not_a_usable_result() -> None:
    recovered = recover_job_response('{"jobResult": 5}')

    assert recovered.recovery_mode is RecoveryMode.WHOLE_TEXT_JSON
    assert recovered.job_result is None


def test_recovery_is_deterministic() -> None:
    text = 'Here is your report:\n{"jobResult":"Report text","jobMemory":{"k":"v"}}\nEnd.'

    assert recover_job_response(text) == recover_job_response(text)


def test_deeply_nested_garbage_does_not_raise() -> None:
    text = "[" * 100_000 + " jobResult"

    recovered = recover_job_response(text)

    assert recovered.recovery_mode is RecoveryMode.PLAIN_TEXT_FALLBACK
    assert recovered.job_result == text
