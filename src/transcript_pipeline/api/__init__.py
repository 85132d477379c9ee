"""HTTP surface for uploads, status polling and scheduler triggers."""

from transcript_pipeline.api.app import create_app

__all__ = ["create_app"]
