"""
Model mixins shared by the notification tables.
"""

from backend.src.models.mixins.guid import GuidMixin, UUIDType, decode_guid, encode_guid

__all__ = ["GuidMixin", "UUIDType", "decode_guid", "encode_guid"]
