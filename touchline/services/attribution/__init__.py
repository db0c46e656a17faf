"""
Attribution Engine Package.

WHAT:
    Turns a conversion into per-touchpoint credit rows, once per active
    attribution model of the converting account.

ARCHITECTURE:
    journey_builder     visitor sessions in the lookback window -> touchpoints
    algorithms          touchpoints -> credit fractions (7 closed variants)
    calculator          journey + algorithm + UTM enrichment + revenue split
    calculation_service every active model, delete-then-insert persistence
"""

from touchline.services.attribution.algorithms import Touchpoint, Credit, get_algorithm
from touchline.services.attribution.calculation_service import calculate_attribution

__all__ = ["Touchpoint", "Credit", "get_algorithm", "calculate_attribution"]
