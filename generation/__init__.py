from .generator import BatchGenerator, BatchRunResult, ScriptOutcome, model_for_quality
from .regenerate import ScriptRegenerator
from .schema import ScriptOutput, ScriptPlan, StoryboardBeat
from .scoring import ScoreResult, score_script

__all__ = [
    "BatchGenerator",
    "BatchRunResult",
    "ScriptOutcome",
    "ScriptRegenerator",
    "ScriptOutput",
    "ScriptPlan",
    "StoryboardBeat",
    "ScoreResult",
    "score_script",
    "model_for_quality",
]
