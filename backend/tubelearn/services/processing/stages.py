"""
Pipeline stage weights and progress arithmetic.

Weights are rough seconds of work per stage. Progress after a stage is the
cumulative weight so far over the total, rounded to a whole percent, and
the remaining estimate is the weight of every stage not yet completed.
"""

from typing import Optional

from tubelearn.enums import PipelineStage, StageStatus

STAGE_WEIGHTS: dict[PipelineStage, int] = {
    PipelineStage.EXTRACT_INFO: 10,
    PipelineStage.EXTRACT_AUDIO: 30,
    PipelineStage.TRANSCRIBE: 40,
    PipelineStage.ANALYZE_CONTENT: 60,
    PipelineStage.GENERATE_KNOWLEDGE_GRAPH: 30,
    PipelineStage.FINALIZE: 10,
}

STAGE_ORDER: list[PipelineStage] = list(PipelineStage)

TOTAL_WEIGHT = sum(STAGE_WEIGHTS.values())


def _cumulative_weight(stage: PipelineStage, inclusive: bool) -> int:
    index = STAGE_ORDER.index(stage)
    stages = STAGE_ORDER[: index + 1] if inclusive else STAGE_ORDER[:index]
    return sum(STAGE_WEIGHTS[s] for s in stages)


def progress_before(stage: PipelineStage) -> int:
    """Percent complete when `stage` starts."""
    return round(100 * _cumulative_weight(stage, inclusive=False) / TOTAL_WEIGHT)


def progress_after(stage: PipelineStage) -> int:
    """Percent complete once `stage` has finished."""
    return round(100 * _cumulative_weight(stage, inclusive=True) / TOTAL_WEIGHT)


def remaining_seconds(
    current_stage: Optional[PipelineStage], stage_status: Optional[StageStatus]
) -> int:
    """
    Estimated seconds left for a non-terminal job.

    A stage that is not yet completed (pending, processing) still counts
    in full.
    """
    if current_stage is None:
        return TOTAL_WEIGHT

    done = _cumulative_weight(current_stage, inclusive=stage_status == StageStatus.COMPLETED)
    return TOTAL_WEIGHT - done
