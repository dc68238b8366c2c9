from __future__ import annotations

import json

import pytest

from core.errors import ErrorKind, MalformedOutputError
from fakes import FakeLLM, plans_payload, script_payload
from generation.parser import parse_plans, parse_script_output, strip_fences
from generation.repair import complete_json


def test_strip_fences() -> None:
    assert strip_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_fences("  [1, 2]  ") == "[1, 2]"


def test_parse_plans_accepts_array_and_wrapped_object() -> None:
    plans = plans_payload(2)

    assert [p.angle for p in parse_plans(json.dumps(plans))] == ["pain_agitation", "social_proof"]
    wrapped = parse_plans("```json\n" + json.dumps({"plans": plans}) + "\n```")
    assert wrapped[1].hook_idea == "Hook idea 2"


def test_parse_plans_rejects_bad_shapes() -> None:
    with pytest.raises(MalformedOutputError) as exc:
        parse_plans('{"items": []}')
    assert exc.value.kind == ErrorKind.MALFORMED_OUTPUT

    with pytest.raises(MalformedOutputError):
        parse_plans('[{"angle": "x", "duration": 0, "hookIdea": "h"}]')

    with pytest.raises(MalformedOutputError):
        parse_plans('[{"angle": "x", "duration": 30')


def test_parse_script_output_keeps_camel_case_storyboard() -> None:
    script = parse_script_output(json.dumps(script_payload(beats=3)))

    payload = script.storyboard_payload()
    assert payload[0]["onScreen"] == "Finally, no more smudges"
    assert "broll" not in payload[1]
    assert script.cta_variants == ["Tap the link to try it", "Shop now and save 20%"]


def test_parse_script_output_requires_storyboard() -> None:
    data = script_payload()
    data["storyboard"] = []
    with pytest.raises(MalformedOutputError):
        parse_script_output(json.dumps(data))


def test_complete_json_repairs_once_at_temperature_zero() -> None:
    llm = FakeLLM(
        {
            "script_expand": ['{"angle": "pain_agitation", "duration": 30, "hook": '],
            "json_repair": [script_payload()],
        }
    )

    result = complete_json(
        llm,
        task_type="script_expand",
        system_prompt="sys",
        user_prompt="user",
        parse=parse_script_output,
        model="m-1",
    )

    assert result.hook.startswith("Stop scrolling")
    assert llm.tasks() == ["script_expand", "json_repair"]
    repair_call = llm.calls[1]
    assert repair_call["temperature"] == 0
    assert repair_call["model"] == "m-1"
    assert "invalid_json" in repair_call["messages"][1]["content"]


def test_complete_json_second_failure_is_hard_failure() -> None:
    llm = FakeLLM({"plan_generate": ["not json"], "json_repair": ["still not json"]})

    with pytest.raises(MalformedOutputError) as exc:
        complete_json(
            llm,
            task_type="plan_generate",
            system_prompt="sys",
            user_prompt="user",
            parse=parse_plans,
        )

    assert str(exc.value).startswith("repair_failed")
    assert len(llm.calls) == 2
