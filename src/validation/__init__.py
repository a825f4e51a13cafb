"""Validation package."""

from src.validation.validator import TemplateValidationError, TemplateValidator

__all__ = ["TemplateValidationError", "TemplateValidator"]
