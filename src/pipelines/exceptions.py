"""Errors raised by the pipeline services.

All of them derive from ``ValueError`` so code that already treats service
failures as bad input keeps working; the API maps each kind to its own
HTTP status.
"""
from __future__ import annotations


class PipelineError(ValueError):
    """Base class for pipeline engine errors."""

    default_message = "Operation de pipeline invalide."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(PipelineError):
    """Missing/malformed field, or a stage that is not part of the pipeline."""

    default_message = "Donnees invalides."


class NotFoundError(PipelineError):
    """Unknown company-scoped identifier."""

    default_message = "Ressource introuvable."


class ConflictError(PipelineError):
    """Uniqueness or referential conflict (duplicate name, pipeline in use...)."""

    default_message = "Conflit avec l'etat actuel."


class StageHistoryIntegrityError(PipelineError):
    """The one-open-entry invariant of a deal's stage history is broken."""

    default_message = "Historique des etapes incoherent."
