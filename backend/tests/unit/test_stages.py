"""
Unit tests for pipeline stage weights and progress arithmetic.
"""

import pytest

from tubelearn.enums import PipelineStage, StageStatus
from tubelearn.services.processing.stages import (
    STAGE_ORDER,
    STAGE_WEIGHTS,
    TOTAL_WEIGHT,
    progress_after,
    progress_before,
    remaining_seconds,
)


class TestStageWeights:
    def test_order_and_total(self):
        assert STAGE_ORDER == [
            PipelineStage.EXTRACT_INFO,
            PipelineStage.EXTRACT_AUDIO,
            PipelineStage.TRANSCRIBE,
            PipelineStage.ANALYZE_CONTENT,
            PipelineStage.GENERATE_KNOWLEDGE_GRAPH,
            PipelineStage.FINALIZE,
        ]
        assert TOTAL_WEIGHT == 180
        assert set(STAGE_WEIGHTS) == set(PipelineStage)


class TestProgress:
    @pytest.mark.parametrize(
        "stage,before,after",
        [
            (PipelineStage.EXTRACT_INFO, 0, 6),
            (PipelineStage.EXTRACT_AUDIO, 6, 22),
            (PipelineStage.TRANSCRIBE, 22, 44),
            (PipelineStage.ANALYZE_CONTENT, 44, 78),
            (PipelineStage.GENERATE_KNOWLEDGE_GRAPH, 78, 94),
            (PipelineStage.FINALIZE, 94, 100),
        ],
    )
    def test_progress_percentages(self, stage, before, after):
        assert progress_before(stage) == before
        assert progress_after(stage) == after

    def test_progress_is_monotonic(self):
        values = [progress_after(stage) for stage in STAGE_ORDER]
        assert values == sorted(values)


class TestRemainingSeconds:
    def test_not_started(self):
        assert remaining_seconds(None, None) == 180

    def test_stage_in_progress_counts_in_full(self):
        assert remaining_seconds(PipelineStage.TRANSCRIBE, StageStatus.PROCESSING) == 140

    def test_completed_stage_is_done(self):
        assert remaining_seconds(PipelineStage.TRANSCRIBE, StageStatus.COMPLETED) == 100
        assert remaining_seconds(PipelineStage.FINALIZE, StageStatus.COMPLETED) == 0
