from clipstack.models.base import Base
from clipstack.models.render_job import RenderJob

__all__ = [
    "Base",
    "RenderJob",
]
