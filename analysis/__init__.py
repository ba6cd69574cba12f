"""
Analysis Layer

Rank correlation, Friedman test and Shapiro-Wilk normality test.
"""

from .statistical import (
    RankCorrelationAnalyzer,
    CorrelationResult,
    FriedmanTest,
    FriedmanResult,
    ShapiroWilkTest,
    ShapiroWilkStatistic,
    correct_multiple_comparisons,
    spearman_p_value,
    rank_data
)

__all__ = [
    # Correlation
    'RankCorrelationAnalyzer',
    'CorrelationResult',
    'spearman_p_value',
    'rank_data',

    # Tests
    'FriedmanTest',
    'FriedmanResult',
    'ShapiroWilkTest',
    'ShapiroWilkStatistic',

    # Corrections
    'correct_multiple_comparisons',
]
