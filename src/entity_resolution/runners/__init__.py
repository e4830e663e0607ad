from entity_resolution.runners.local import LocalResolutionPipeline, ResolutionResult

__all__ = ["LocalResolutionPipeline", "ResolutionResult"]
