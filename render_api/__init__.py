"""
HK Render Studio API - prompt construction and image generation orchestration
"""

__version__ = "1.0.0"
