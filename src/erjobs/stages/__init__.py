"""Pipeline stages for the research job engine."""

from erjobs.stages.base import Stage
from erjobs.stages.financial import FinancialGatherStage
from erjobs.stages.news import NewsGatherStage
from erjobs.stages.planner import PlanStage
from erjobs.stages.synthesizer import SynthesizeStage

__all__ = [
    "FinancialGatherStage",
    "NewsGatherStage",
    "PlanStage",
    "Stage",
    "SynthesizeStage",
]
