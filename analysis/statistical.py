"""
Statistical Analysis

Rank based statistics complementing the outlier engine.

Features:
- Rank correlation: Spearman's rho, Kendall's tau-a / tau-b and
  Goodman-Kruskal's gamma, with p-values for Spearman
- Multiple comparison correction (FDR, Bonferroni, ...) via statsmodels
- Friedman test for k related samples
- Shapiro-Wilk normality test, with the Shapiro-Francia variant for
  leptokurtic samples
"""

from typing import List, Dict, Optional, Tuple, Any, Sequence
from dataclasses import dataclass, asdict, field
import warnings
import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.multitest import multipletests

from preprocessing.outliers.execution import ExecutionContext


ALTERNATIVES = ('two-sided', 'less', 'greater')
CORRELATION_METHODS = ('spearman', 'kendall_tau_a', 'kendall_tau_b', 'goodman_kruskal_gamma')


def rank_data(values: np.ndarray) -> np.ndarray:
    """Ranks starting at 1, tied values get their average rank."""
    return stats.rankdata(values, method='average')


def correct_multiple_comparisons(p_values: np.ndarray, method: Optional[str] = 'fdr_bh') -> np.ndarray:
    """
    Apply multiple comparison correction.

    Args:
        p_values: Array of p-values (NaN entries are left untouched)
        method: Correction method, None for no correction
               Options: 'bonferroni', 'fdr_bh', 'fdr_by', 'holm', 'sidak'

    Returns:
        Corrected p-values
    """
    p_vals = np.asarray(p_values, dtype=float).copy()
    if method is None:
        return p_vals

    valid_mask = ~np.isnan(p_vals)
    if not np.any(valid_mask):
        return p_vals

    _, corrected, _, _ = multipletests(p_vals[valid_mask], method=method)
    p_vals[valid_mask] = corrected
    return p_vals


def spearman_p_value(correlation: float, dof: int, alternative: str = 'two-sided') -> float:
    """
    p-value of a Spearman correlation from Student's t distribution.

    t = r * sqrt(dof / ((1 + r)(1 - r))); a perfect correlation yields 0.

    Args:
        correlation: Spearman's rho
        dof: Degrees of freedom (n - 2)
        alternative: 'two-sided', 'less' or 'greater'

    Returns:
        p-value, NaN if dof < 1 or the correlation is NaN
    """
    if alternative not in ALTERNATIVES:
        raise ValueError(f"alternative must be one of {ALTERNATIVES}, got '{alternative}'")
    if dof <= 0 or np.isnan(correlation):
        return np.nan

    r = np.float64(correlation)
    with np.errstate(divide='ignore', invalid='ignore'):
        t = r * np.sqrt(dof / ((r + 1.0) * (1.0 - r)))
    if np.isnan(t):
        return 0.0

    if alternative == 'two-sided':
        return float(2 * stats.t.sf(abs(t), dof))
    if alternative == 'less':
        return float(stats.t.cdf(t, dof))
    return float(stats.t.sf(t, dof))


@dataclass
class CorrelationResult:
    """Correlation of one column pair."""
    first_column: str
    second_column: str
    correlation: float
    p_value: float
    degrees_of_freedom: int
    n_samples: int


class RankCorrelationAnalyzer:
    """
    Rank correlation between numeric columns.

    Rows holding a missing value in any analysed column are ignored.
    """

    def __init__(
        self,
        method: str = 'spearman',
        alternative: str = 'two-sided',
        correction_method: Optional[str] = None
    ):
        """
        Initialize rank correlation analyzer.

        Args:
            method: 'spearman', 'kendall_tau_a', 'kendall_tau_b' or
                    'goodman_kruskal_gamma'
            alternative: Alternative hypothesis of the Spearman p-value
            correction_method: Multiple comparison correction of the
                               p-values (None = no correction)
        """
        if method not in CORRELATION_METHODS:
            raise ValueError(f"method must be one of {CORRELATION_METHODS}, got '{method}'")
        if alternative not in ALTERNATIVES:
            raise ValueError(f"alternative must be one of {ALTERNATIVES}, got '{alternative}'")
        self.method = method
        self.alternative = alternative
        self.correction_method = correction_method

    @staticmethod
    def concordance_counts(
        x: np.ndarray,
        y: np.ndarray,
        exec_context: Optional[ExecutionContext] = None
    ) -> Tuple[int, int]:
        """
        Count concordant and discordant pairs.

        Pairs tied in x or y count as neither.

        Returns:
            Tuple of (concordant, discordant)
        """
        exec_context = exec_context or ExecutionContext()
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        n = len(x)

        concordant = 0
        discordant = 0
        for i in range(n - 1):
            exec_context.check_canceled()
            signs = np.sign(x[i + 1:] - x[i]) * np.sign(y[i + 1:] - y[i])
            concordant += int(np.sum(signs > 0))
            discordant += int(np.sum(signs < 0))
            exec_context.set_progress((i + 1) / (n - 1))
        return concordant, discordant

    @staticmethod
    def _tied_pairs(values: np.ndarray) -> float:
        _, counts = np.unique(values, return_counts=True)
        return float(np.sum(counts * (counts - 1)) / 2)

    @staticmethod
    def _spearman(x: np.ndarray, y: np.ndarray) -> float:
        rx = rank_data(x)
        ry = rank_data(y)
        dx = rx - rx.mean()
        dy = ry - ry.mean()
        denominator = np.sqrt(np.sum(dx ** 2) * np.sum(dy ** 2))
        if denominator == 0:
            return np.nan
        return float(np.sum(dx * dy) / denominator)

    def correlate(
        self,
        x: np.ndarray,
        y: np.ndarray,
        first_column: str = 'x',
        second_column: str = 'y',
        exec_context: Optional[ExecutionContext] = None
    ) -> CorrelationResult:
        """
        Correlation of two equally long samples without missing values.

        Args:
            x: First sample
            y: Second sample
            first_column: Name reported for x
            second_column: Name reported for y
            exec_context: Execution context for progress and cancellation

        Returns:
            CorrelationResult (p-value only for Spearman, NaN otherwise)
        """
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        if len(x) != len(y):
            raise ValueError(f"Samples must have the same length ({len(x)} != {len(y)})")

        n = len(x)
        dof = n - 2
        p_value = np.nan

        if n < 2:
            correlation = np.nan
        elif self.method == 'spearman':
            correlation = self._spearman(x, y)
            p_value = spearman_p_value(correlation, dof, self.alternative)
        else:
            concordant, discordant = self.concordance_counts(x, y, exec_context)
            with np.errstate(divide='ignore', invalid='ignore'):
                if self.method == 'kendall_tau_a':
                    correlation = (concordant - discordant) / (n * (n - 1) / 2)
                elif self.method == 'kendall_tau_b':
                    n0 = n * (n - 1) / 2
                    n1 = self._tied_pairs(x)
                    n2 = self._tied_pairs(y)
                    correlation = np.float64(concordant - discordant) / np.sqrt((n0 - n1) * (n0 - n2))
                else:
                    correlation = np.float64(concordant - discordant) / (concordant + discordant)
            correlation = float(correlation)

        return CorrelationResult(first_column, second_column, correlation, p_value, dof, n)

    def compute(
        self,
        df: pd.DataFrame,
        columns: Optional[List[str]] = None,
        exec_context: Optional[ExecutionContext] = None
    ) -> pd.DataFrame:
        """
        Correlate every pair of columns.

        Args:
            df: Input data
            columns: Columns to correlate (default: all numeric columns)
            exec_context: Execution context for progress and cancellation

        Returns:
            DataFrame with one row per column pair: first_column,
            second_column, correlation, p_value, degrees_of_freedom,
            n_samples and, if a correction is configured, p_value_corrected
        """
        exec_context = exec_context or ExecutionContext()
        if columns is None:
            columns = df.select_dtypes(include=[np.number]).columns.tolist()
        if len(columns) < 2:
            raise ValueError(f"At least two columns are required, got {len(columns)}")

        data = df[columns].apply(pd.to_numeric, errors='raise').astype(float)
        complete = data.dropna()
        n_dropped = len(data) - len(complete)
        if n_dropped > 0:
            warnings.warn(f"{n_dropped} row(s) with missing values were ignored")

        values = complete.to_numpy()
        pairs = [(i, j) for i in range(len(columns)) for j in range(i + 1, len(columns))]

        results = []
        for i, j in pairs:
            exec_context.check_canceled()
            pair_context = exec_context.create_sub_context(1.0 / len(pairs))
            result = self.correlate(values[:, i], values[:, j], columns[i], columns[j], pair_context)
            results.append(asdict(result))

        results_df = pd.DataFrame(results)
        if self.correction_method is not None:
            results_df['p_value_corrected'] = correct_multiple_comparisons(
                results_df['p_value'].to_numpy(), self.correction_method
            )
        return results_df

    def correlation_matrix(
        self,
        df: pd.DataFrame,
        columns: Optional[List[str]] = None
    ) -> pd.DataFrame:
        """Symmetric correlation matrix with ones on the diagonal."""
        if columns is None:
            columns = df.select_dtypes(include=[np.number]).columns.tolist()

        pairs = self.compute(df, columns)
        matrix = pd.DataFrame(np.eye(len(columns)), index=columns, columns=columns)
        for _, row in pairs.iterrows():
            matrix.loc[row['first_column'], row['second_column']] = row['correlation']
            matrix.loc[row['second_column'], row['first_column']] = row['correlation']
        return matrix


@dataclass
class FriedmanResult:
    """
    Result of the Friedman test.

    Attributes:
        statistic: Friedman number Q
        p_value: 1 - ChiSq_cdf(Q, k - 1)
        critical_value: ChiSq quantile at 1 - alpha
        reject: Whether H0 (all treatments alike) is rejected at alpha
        degrees_of_freedom: k - 1
        n_blocks: Number of rows
        n_treatments: Number of columns
        alpha: Significance level
    """
    statistic: float
    p_value: float
    critical_value: float
    reject: bool
    degrees_of_freedom: int
    n_blocks: int
    n_treatments: int
    alpha: float

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([{
            'Reject H0': self.reject,
            'Q': self.statistic,
            'Critical ChiSq Value': self.critical_value,
            'p-Value': self.p_value,
        }])


class FriedmanTest:
    """
    Friedman test for differences between k related samples.

    Every row (block) is ranked on its own, ties get their average rank.
    The test statistic Q is compared to a ChiSq distribution with k - 1
    degrees of freedom, which is only a good approximation for more than
    15 rows and more than 4 columns.
    """

    def __init__(self, alpha: float = 0.05):
        if not 0 < alpha < 1:
            raise ValueError(f"alpha must be in (0, 1), got {alpha}")
        self.alpha = alpha

    def test(
        self,
        data: pd.DataFrame,
        columns: Optional[List[str]] = None,
        exec_context: Optional[ExecutionContext] = None
    ) -> Optional[FriedmanResult]:
        """
        Run the test.

        Args:
            data: One row per block, one column per treatment
            columns: Treatment columns (default: all numeric columns)
            exec_context: Execution context for progress and cancellation

        Returns:
            FriedmanResult, None for an empty table

        Raises:
            ValueError: If fewer than 3 columns are chosen or values are missing
        """
        exec_context = exec_context or ExecutionContext()
        if columns is None:
            columns = data.select_dtypes(include=[np.number]).columns.tolist()

        k = len(columns)
        if k < 3:
            raise ValueError(f"Not enough data columns chosen ({k}), please choose more than 2.")

        values = data[columns].to_numpy(dtype=float)
        n = len(values)
        df = k - 1

        if k <= 4:
            warnings.warn(
                "The resulting test statistic Q has a Chi-squared probability "
                f"distribution only for more than 4 columns (is: {k})."
            )
        if n == 0:
            return None
        if np.isnan(values).any():
            raise ValueError("The Friedman test does not support missing values")
        if n <= 15:
            warnings.warn(
                "The resulting test statistic Q has a Chi-squared probability "
                f"distribution only for more than 15 rows (is: {n})."
            )

        ranks = np.empty_like(values)
        for i, row in enumerate(exec_context.iterate(values, total=n, desc="Ranking rows")):
            ranks[i] = rank_data(row)

        column_mean = ranks.mean(axis=0)
        total_mean = column_mean.mean()

        sst = n * np.sum((column_mean - total_mean) ** 2)
        sse = np.sum((ranks - total_mean) ** 2) / (n * df)

        with np.errstate(divide='ignore', invalid='ignore'):
            q = float(sst / sse)

        p_value = float(stats.chi2.sf(q, df))
        critical_value = float(stats.chi2.ppf(1 - self.alpha, df))

        return FriedmanResult(
            statistic=q,
            p_value=p_value,
            critical_value=critical_value,
            reject=bool(p_value < self.alpha),
            degrees_of_freedom=df,
            n_blocks=n,
            n_treatments=k,
            alpha=self.alpha
        )


@dataclass
class ShapiroWilkStatistic:
    """W statistic, p-value and the advisory warnings of the sample."""
    statistic: float
    p_value: float
    warnings: List[str] = field(default_factory=list)


class ShapiroWilkTest:
    """
    Shapiro-Wilk test for normality.

    With shapiro_francia enabled, leptokurtic samples (excess kurtosis
    above 3) are tested with the Shapiro-Francia statistic and Royston's
    p-value approximation; the remaining samples fall back to
    Shapiro-Wilk.
    """

    MIN_ROWS = 3
    SHAPIRO_FRANCIA_KURTOSIS = 3.0

    NOT_LEPTOKURTIC_WARNING = "Some samples are not leptokurtic. Shapiro-Wilk test was used for them instead."
    MISSING_VALUES_WARNING = "Input contains missing values. They will be ignored"

    def __init__(self, shapiro_francia: bool = False, correction_method: Optional[str] = None):
        self.shapiro_francia = shapiro_francia
        self.correction_method = correction_method

    @staticmethod
    def expected_normal_order_statistics(n: int) -> np.ndarray:
        """Blom's approximation m_i = Phi^-1((i - 3/8) / (n + 1/4))."""
        i = np.arange(1, n + 1)
        return stats.norm.ppf((i - 3.0 / 8.0) / (n + 0.25))

    @staticmethod
    def shapiro_francia_p_value(w: float, n: int) -> float:
        """Royston's approximation of the Shapiro-Francia p-value."""
        u = np.log(n)
        v = np.log(u)
        mu = -1.2725 + 1.0521 * (v - u)
        sig = 1.0308 - 0.26758 * (v + 2 / u)
        with np.errstate(divide='ignore'):
            z = (np.log(1 - w) - mu) / sig
        return float(stats.norm.sf(z))

    def _shapiro_francia(self, sorted_values: np.ndarray) -> float:
        n = len(sorted_values)
        m = self.expected_normal_order_statistics(n)
        weighted_sum = np.sum(m * sorted_values) / np.sqrt(np.sum(m ** 2))
        sum_of_squares = np.sum((sorted_values - sorted_values.mean()) ** 2)
        return float(weighted_sum ** 2 / sum_of_squares)

    def test(self, values: Sequence[float]) -> ShapiroWilkStatistic:
        """
        Test one sample.

        Args:
            values: Sample values (NaN are ignored with a warning)

        Returns:
            ShapiroWilkStatistic

        Raises:
            ValueError: If fewer than 3 non-missing values remain
        """
        values = np.asarray(values, dtype=float)
        advisories: List[str] = []

        missing = np.isnan(values)
        if missing.any():
            advisories.append(self.MISSING_VALUES_WARNING)
            values = values[~missing]

        n = len(values)
        if n < self.MIN_ROWS:
            raise ValueError("Not enough data points to calculate the statistic.")

        if self.shapiro_francia:
            kurtosis = stats.kurtosis(values, fisher=True, bias=False) if n > 3 else np.nan
            if kurtosis > self.SHAPIRO_FRANCIA_KURTOSIS:
                w = self._shapiro_francia(np.sort(values))
                return ShapiroWilkStatistic(w, self.shapiro_francia_p_value(w, n), advisories)
            advisories.append(self.NOT_LEPTOKURTIC_WARNING)

        w, p_value = stats.shapiro(values)
        return ShapiroWilkStatistic(float(w), float(p_value), advisories)

    def test_columns(self, df: pd.DataFrame, columns: Optional[List[str]] = None) -> pd.DataFrame:
        """
        Test several columns.

        Advisory warnings are raised once through the warnings module.

        Returns:
            DataFrame with column, statistic, p_value and, if a correction
            is configured, p_value_corrected
        """
        if columns is None:
            columns = df.select_dtypes(include=[np.number]).columns.tolist()

        records: List[Dict[str, Any]] = []
        advisories: List[str] = []
        for column in columns:
            result = self.test(df[column].to_numpy(dtype=float))
            records.append({'column': column, 'statistic': result.statistic, 'p_value': result.p_value})
            advisories.extend(m for m in result.warnings if m not in advisories)

        for message in advisories:
            warnings.warn(message)

        results_df = pd.DataFrame(records, columns=['column', 'statistic', 'p_value'])
        if self.correction_method is not None:
            results_df['p_value_corrected'] = correct_multiple_comparisons(
                results_df['p_value'].to_numpy(), self.correction_method
            )
        return results_df
