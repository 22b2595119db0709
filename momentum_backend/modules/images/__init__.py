"""
Momentum AI - Images Module
"""
from .image_service import ImageGenerationService, get_image_service

__all__ = ['ImageGenerationService', 'get_image_service']
