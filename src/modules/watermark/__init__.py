"""
Watermark Module

Per-chat watermark record and its on-disk content.
"""

from src.modules.watermark.models import Watermark, WatermarkSnapshot

__all__ = ["Watermark", "WatermarkSnapshot"]
