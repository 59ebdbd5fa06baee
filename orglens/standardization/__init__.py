"""
Standardization module: raw source records into canonical PersonRecords
"""

from .normalize_people import NormalizationReport, Normalizer, RawPersonFields

__all__ = ['NormalizationReport', 'Normalizer', 'RawPersonFields']
