# Models module
from clipper_studio.models.project import Project
from clipper_studio.models.clip import Clip, ClipAsset
from clipper_studio.models.usage import UsageCounter
from clipper_studio.models.job import Job

__all__ = ["Project", "Clip", "ClipAsset", "UsageCounter", "Job"]
