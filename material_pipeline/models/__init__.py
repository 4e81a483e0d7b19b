from material_pipeline.models.expression import Expression
from material_pipeline.models.glossary_entry import GlossaryEntry
from material_pipeline.models.job import Job, JobStatus, JobType
from material_pipeline.models.material import Material, MaterialStatus
from material_pipeline.models.pipeline_state import MaterialPipelineState
from material_pipeline.models.segment import Segment

__all__ = [
    "Expression",
    "GlossaryEntry",
    "Job",
    "JobStatus",
    "JobType",
    "Material",
    "MaterialStatus",
    "MaterialPipelineState",
    "Segment",
]
