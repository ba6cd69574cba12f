"""
Preprocessing Layer

Outlier detection and treatment.
"""

from .outliers import (
    NumericOutliers,
    NumericOutliersResult,
    OutlierModelPort,
    OutlierReviser,
    QuantileEstimator,
    IntervalModel,
    MemberCounter,
    TreatmentOptions,
    EstimationSettings,
    apply_model
)

__all__ = [
    'NumericOutliers',
    'NumericOutliersResult',
    'OutlierModelPort',
    'OutlierReviser',
    'QuantileEstimator',
    'IntervalModel',
    'MemberCounter',
    'TreatmentOptions',
    'EstimationSettings',
    'apply_model',
]
