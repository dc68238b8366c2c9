from __future__ import annotations

import json


def beat(t: str, shot: str, on_screen: str, spoken: str, broll: list[str] | None = None) -> dict:
    item = {"t": t, "shot": shot, "onScreen": on_screen, "spoken": spoken}
    if broll is not None:
        item["broll"] = broll
    return item


def script_payload(
    *,
    angle: str = "pain_agitation",
    duration: int = 30,
    hook: str = "Stop scrolling if you've tried 5 mascaras that smudge?",
    beats: int = 6,
    ctas: list[str] | None = None,
    checklist: list[str] | None = None,
    warnings: list[str] | None = None,
) -> dict:
    storyboard = [
        beat("0-3s", "Close-up of smudged lashes", "Finally, no more smudges", "I finally found one that works", ["lash macro"]),
        beat("3-8s", "Show the wand next to the old tube", "Easy 2-step routine", "It's so easy, the results are instant"),
        beat("8-14s", "Hold the tube to camera", "Lasts all day", "I wore it through a workout"),
        beat("14-20s", "Point at the lashes in the mirror", "No flakes", "Not a single flake by dinner"),
        beat("20-25s", "Apply a second coat, medium shot", "Buildable", "Two coats for a night out"),
        beat("25-30s", "Smile to camera holding the box", "Link below", "Grab yours before it sells out"),
    ][:beats]
    return {
        "angle": angle,
        "duration": duration,
        "hook": hook,
        "storyboard": storyboard,
        "ctaVariants": ["Tap the link to try it", "Shop now and save 20%"] if ctas is None else ctas,
        "filmingChecklist": ["Ring light", "Mirror", "Mascara tube"] if checklist is None else checklist,
        "warnings": warnings or [],
    }


def plans_payload(count: int, angles=("pain_agitation", "social_proof"), durations=(30,)) -> list[dict]:
    return [
        {
            "angle": angles[i % len(angles)],
            "duration": durations[i % len(durations)],
            "hookIdea": f"Hook idea {i + 1}",
            "beats": ["Hook", "Problem", "Solution", "CTA"],
            "complianceNotes": [],
        }
        for i in range(count)
    ]


class FakeLLM:
    """Replays scripted responses per task type; exceptions in the queue are raised."""

    def __init__(self, responses: dict[str, list] | None = None) -> None:
        self.responses = {task: list(items) for task, items in (responses or {}).items()}
        self.calls: list[dict] = []

    def chat_completion(
        self,
        messages,
        *,
        task_type,
        model=None,
        temperature=0.7,
        max_tokens=4096,
        json_mode=False,
    ) -> str:
        self.calls.append(
            {
                "task_type": task_type,
                "model": model,
                "temperature": temperature,
                "json_mode": json_mode,
                "messages": messages,
            }
        )
        queue = self.responses.get(task_type) or []
        if not queue:
            raise AssertionError(f"unexpected {task_type} call")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, str):
            return item
        return json.dumps(item)

    def tasks(self) -> list[str]:
        return [call["task_type"] for call in self.calls]


class FakeQueues:
    def __init__(self, fail: Exception | None = None) -> None:
        self.fail = fail
        self.enqueued: list[tuple] = []

    def enqueue_generate_batch(self, batch_id, *, lane="standard"):
        if self.fail is not None:
            raise self.fail
        self.enqueued.append(("generate-batch", batch_id, lane))

    def enqueue_regenerate(self, script_id, source_script_id, instruction, *, lane="standard"):
        if self.fail is not None:
            raise self.fail
        self.enqueued.append(("regenerate-script", script_id, source_script_id, instruction, lane))
