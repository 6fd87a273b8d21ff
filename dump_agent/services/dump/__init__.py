from .artifact_producer import ArtifactProducer
from .command_builder import build_artifact_name, build_dump_pipeline, shell_escape

__all__ = [
    "ArtifactProducer",
    "build_artifact_name",
    "build_dump_pipeline",
    "shell_escape",
]
