"""
Outlier Treatment Options

Enumerations and configuration dataclasses controlling how intervals are
estimated and how outliers are treated.
"""

from typing import Optional
from dataclasses import dataclass
from enum import Enum

from .exceptions import InvalidSettingsError


class DetectionOption(Enum):
    """Which side(s) of the permitted interval are checked."""
    LOWER_ONLY = 'lower'
    UPPER_ONLY = 'upper'
    BOTH = 'both'

    @property
    def checks_lower(self) -> bool:
        return self in (DetectionOption.LOWER_ONLY, DetectionOption.BOTH)

    @property
    def checks_upper(self) -> bool:
        return self in (DetectionOption.UPPER_ONLY, DetectionOption.BOTH)


class TreatmentOption(Enum):
    """What happens to rows or cells holding outliers."""
    REPLACE = 'replace'
    FILTER_OUT_OUTLIER_ROWS = 'filter'
    RETAIN_ONLY_OUTLIER_ROWS = 'retain'


class ReplacementStrategy(Enum):
    """How an outlier cell is replaced when the treatment is REPLACE."""
    SET_MISSING = 'missing'
    CLAMP_TO_BOUNDARY = 'clamp'


class EstimationMode(Enum):
    """Exact quantiles over materialised values or single pass estimates."""
    EXACT = 'exact'
    HEURISTIC = 'heuristic'


class EstimationType(Enum):
    """
    Hyndman & Fan sample quantile definitions.

    The value is the matching numpy.quantile method.
    """
    R_1 = 'inverted_cdf'
    R_2 = 'averaged_inverted_cdf'
    R_3 = 'closest_observation'
    R_4 = 'interpolated_inverted_cdf'
    R_5 = 'hazen'
    R_6 = 'weibull'
    R_7 = 'linear'
    R_8 = 'median_unbiased'
    R_9 = 'normal_unbiased'

    @property
    def numpy_method(self) -> str:
        return self.value

    @classmethod
    def from_name(cls, name: str) -> 'EstimationType':
        """Parse 'R_7', 'r7' or a numpy method name."""
        key = name.strip().upper().replace('-', '_')
        if key.startswith('R') and not key.startswith('R_'):
            key = 'R_' + key[1:]
        if key in cls.__members__:
            return cls[key]
        try:
            return cls(name.strip().lower())
        except ValueError:
            raise InvalidSettingsError(f"Unknown estimation type '{name}'") from None


def _parse_enum(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        if value.upper() in enum_cls.__members__:
            return enum_cls[value.upper()]
        try:
            return enum_cls(value.lower())
        except ValueError:
            pass
    raise InvalidSettingsError(
        f"Invalid {enum_cls.__name__} '{value}'. "
        f"Valid options: {[m.name for m in enum_cls]}"
    )


@dataclass(frozen=True)
class TreatmentOptions:
    """
    Treatment configuration.

    Attributes:
        detection: Side(s) of the interval checked for outliers
        treatment: Replace outlier cells or filter/retain outlier rows
        replacement: Replacement strategy used by REPLACE
        iqr_multiplier: Scale k of the interquartile range (>= 0)
        update_domain: Refresh column domains of the treated table
    """
    detection: DetectionOption = DetectionOption.BOTH
    treatment: TreatmentOption = TreatmentOption.REPLACE
    replacement: ReplacementStrategy = ReplacementStrategy.CLAMP_TO_BOUNDARY
    iqr_multiplier: float = 1.5
    update_domain: bool = False

    def __post_init__(self):
        """Validate configuration."""
        object.__setattr__(self, 'detection', _parse_enum(DetectionOption, self.detection))
        object.__setattr__(self, 'treatment', _parse_enum(TreatmentOption, self.treatment))
        object.__setattr__(self, 'replacement', _parse_enum(ReplacementStrategy, self.replacement))

        if self.iqr_multiplier is None or not self.iqr_multiplier >= 0:
            raise InvalidSettingsError("The IQR scalar has to be greater than or equal 0.")

    def to_dict(self) -> dict:
        return {
            'detection': self.detection.name,
            'treatment': self.treatment.name,
            'replacement': self.replacement.name,
            'iqr_multiplier': float(self.iqr_multiplier),
            'update_domain': bool(self.update_domain),
        }

    @classmethod
    def from_dict(cls, d: dict) -> 'TreatmentOptions':
        return cls(**d)


@dataclass(frozen=True)
class EstimationSettings:
    """
    Quantile estimation configuration.

    Attributes:
        mode: EXACT or HEURISTIC
        estimation_type: Quantile definition used by EXACT
        heuristic_row_threshold: Row count above which EXACT falls back to
            HEURISTIC. The fallback is opt-in: with the default None, EXACT
            is used for inputs of any size
    """
    mode: EstimationMode = EstimationMode.EXACT
    estimation_type: EstimationType = EstimationType.R_6
    heuristic_row_threshold: Optional[int] = None

    def __post_init__(self):
        """Validate configuration."""
        object.__setattr__(self, 'mode', _parse_enum(EstimationMode, self.mode))
        if isinstance(self.estimation_type, str):
            object.__setattr__(self, 'estimation_type', EstimationType.from_name(self.estimation_type))
        elif not isinstance(self.estimation_type, EstimationType):
            raise InvalidSettingsError(f"Invalid estimation type '{self.estimation_type}'")

        if self.heuristic_row_threshold is not None and self.heuristic_row_threshold < 1:
            raise InvalidSettingsError(
                f"heuristic_row_threshold must be positive, got {self.heuristic_row_threshold}"
            )

    def resolve_mode(self, n_rows: int) -> EstimationMode:
        """Mode actually used for a table with n_rows rows (-1 if unknown)."""
        if (self.mode == EstimationMode.EXACT
                and self.heuristic_row_threshold is not None
                and n_rows > self.heuristic_row_threshold):
            return EstimationMode.HEURISTIC
        return self.mode
