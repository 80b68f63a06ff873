from .archive import strip_top_level_directory
from .job_builder import BuildJobBuilder, build_job_name

__all__ = ["strip_top_level_directory", "BuildJobBuilder", "build_job_name"]
