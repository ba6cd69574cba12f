"""
Numeric Outliers

IQR based outlier detection and treatment with group aware intervals.
"""

from .exceptions import (
    InvalidSettingsError,
    CanceledExecutionError,
    OutlierWarning
)
from .options import (
    DetectionOption,
    TreatmentOption,
    ReplacementStrategy,
    EstimationMode,
    EstimationType,
    TreatmentOptions,
    EstimationSettings
)
from .execution import ExecutionContext
from .listeners import (
    WarningListener,
    WarningCollector,
    PythonWarningsListener
)
from .grouping import GroupKey, GroupKeyIndex, GLOBAL_GROUP
from .counters import MemberCounter
from .intervals import Interval, IntervalModel
from .domain import DomainUpdater
from .quantiles import QuantileEstimator, PSquareQuantile, compute_intervals
from .summary import SummaryTableBuilder
from .internals import TreatmentInternals
from .reviser import OutlierReviser, TreatmentResult
from .detector import (
    NumericOutliers,
    NumericOutliersResult,
    OutlierModelPort,
    apply_model
)

__all__ = [
    # Errors
    'InvalidSettingsError',
    'CanceledExecutionError',
    'OutlierWarning',

    # Options
    'DetectionOption',
    'TreatmentOption',
    'ReplacementStrategy',
    'EstimationMode',
    'EstimationType',
    'TreatmentOptions',
    'EstimationSettings',

    # Execution
    'ExecutionContext',
    'WarningListener',
    'WarningCollector',
    'PythonWarningsListener',

    # Model
    'GroupKey',
    'GroupKeyIndex',
    'GLOBAL_GROUP',
    'MemberCounter',
    'Interval',
    'IntervalModel',
    'DomainUpdater',

    # Algorithms
    'QuantileEstimator',
    'PSquareQuantile',
    'compute_intervals',
    'SummaryTableBuilder',
    'TreatmentInternals',
    'OutlierReviser',
    'TreatmentResult',

    # Facade
    'NumericOutliers',
    'NumericOutliersResult',
    'OutlierModelPort',
    'apply_model',
]
