"""
Pydantic schemas for the render API
"""
