"""Data models for mxdeploy."""
from mxdeploy.models.settings import DEPLOYMENT_TYPES, ServerSettings

__all__ = [
    'DEPLOYMENT_TYPES',
    'ServerSettings',
]
