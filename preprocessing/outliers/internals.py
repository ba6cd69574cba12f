"""
Treatment Internals

Accumulated state of one treatment partition: the model it was treated
with, its three counters and the warnings it raised. Internals of several
partitions are merged into one before the summary table is built, and can
be checkpointed as a single binary blob whose sections load independently.
"""

from typing import Iterable, List, Optional, Sequence, Union
import numpy as np

from data.table import ColumnSpec, DataTable
from .counters import MemberCounter
from .execution import ExecutionContext
from .intervals import IntervalModel
from .listeners import WarningListener
from .summary import SummaryTableBuilder
from .serialization import (
    FORMAT_VERSION,
    array_to_bytes,
    bytes_to_array,
    counter_from_bytes,
    counter_to_bytes,
    pack_arrays,
    string_array,
    unpack_arrays,
)


MODEL_SECTION = 'model'
MEMBER_SECTION = 'member_counter'
OUTLIER_SECTION = 'outlier_counter'
MISSING_GROUPS_SECTION = 'missing_groups_counter'
WARNINGS_SECTION = 'warnings'

SECTIONS = (MODEL_SECTION, MEMBER_SECTION, OUTLIER_SECTION, MISSING_GROUPS_SECTION, WARNINGS_SECTION)


class TreatmentInternals(WarningListener):
    """
    Per partition accumulator.

    Doubles as a warning listener so warnings raised while treating a
    partition are recorded with its state.

    Attributes:
        model (IntervalModel): Model the partition was treated with
        member_counter (MemberCounter): Non-missing values of known groups
        outlier_counter (MemberCounter): Treated outliers
        missing_groups_counter (MemberCounter): Values of groups unknown to the model
        warnings (List[str]): Insertion ordered, de-duplicated warnings
    """

    def __init__(
        self,
        model: IntervalModel,
        member_counter: Optional[MemberCounter] = None,
        outlier_counter: Optional[MemberCounter] = None,
        missing_groups_counter: Optional[MemberCounter] = None,
        warnings: Optional[Iterable[str]] = None,
        group_column_specs: Optional[Sequence[ColumnSpec]] = None
    ):
        self.model = model
        self.member_counter = member_counter or MemberCounter()
        self.outlier_counter = outlier_counter or MemberCounter()
        self.missing_groups_counter = missing_groups_counter or MemberCounter()
        self.warnings: List[str] = []
        self.group_column_specs = list(group_column_specs) if group_column_specs is not None else None
        for message in warnings or []:
            self.warning(message)

    def warning(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)

    @classmethod
    def merge(cls, internals: Sequence['TreatmentInternals']) -> 'TreatmentInternals':
        """
        Combine the internals of several partitions.

        Counters are summed, the model and group column specs are taken
        from the first element and warnings are united in order.

        Raises:
            ValueError: If no internals are given
        """
        internals = list(internals)
        if not internals:
            raise ValueError("Cannot merge an empty list of internals")

        first = internals[0]
        warnings: List[str] = []
        for item in internals:
            for message in item.warnings:
                if message not in warnings:
                    warnings.append(message)

        return cls(
            first.model,
            MemberCounter.merge(i.member_counter for i in internals),
            MemberCounter.merge(i.outlier_counter for i in internals),
            MemberCounter.merge(i.missing_groups_counter for i in internals),
            warnings,
            first.group_column_specs
        )

    def write_summary(
        self,
        exec_context: Optional[ExecutionContext] = None,
        group_column_specs: Optional[Sequence[ColumnSpec]] = None
    ) -> DataTable:
        """Render the summary table of the accumulated counts."""
        builder = SummaryTableBuilder(
            self.model,
            self.member_counter,
            self.outlier_counter,
            self.missing_groups_counter,
            group_column_specs if group_column_specs is not None else self.group_column_specs
        )
        return builder.build(exec_context)

    def to_bytes(self) -> bytes:
        """Serialize model, counters and warnings into one blob."""
        return pack_arrays({
            'version': np.array([FORMAT_VERSION], dtype=np.int64),
            MODEL_SECTION: bytes_to_array(self.model.to_bytes()),
            MEMBER_SECTION: bytes_to_array(counter_to_bytes(self.member_counter)),
            OUTLIER_SECTION: bytes_to_array(counter_to_bytes(self.outlier_counter)),
            MISSING_GROUPS_SECTION: bytes_to_array(counter_to_bytes(self.missing_groups_counter)),
            WARNINGS_SECTION: string_array(self.warnings),
        })

    @classmethod
    def from_bytes(cls, blob: bytes) -> 'TreatmentInternals':
        arrays = unpack_arrays(blob)
        missing = [s for s in SECTIONS if s not in arrays]
        if missing:
            raise ValueError(f"Serialized internals lack section(s) {missing}")
        return cls(
            IntervalModel.from_bytes(array_to_bytes(arrays[MODEL_SECTION])),
            counter_from_bytes(array_to_bytes(arrays[MEMBER_SECTION])),
            counter_from_bytes(array_to_bytes(arrays[OUTLIER_SECTION])),
            counter_from_bytes(array_to_bytes(arrays[MISSING_GROUPS_SECTION])),
            [str(w) for w in arrays[WARNINGS_SECTION]]
        )

    @staticmethod
    def load_section(blob: bytes, name: str) -> Union[IntervalModel, MemberCounter, List[str]]:
        """
        Load a single section of a serialized internals blob.

        Args:
            blob: Output of to_bytes()
            name: One of SECTIONS

        Returns:
            IntervalModel, MemberCounter or list of warnings
        """
        if name not in SECTIONS:
            raise ValueError(f"Unknown section '{name}'. Valid sections: {list(SECTIONS)}")

        arrays = unpack_arrays(blob)
        if name not in arrays:
            raise ValueError(f"Serialized internals lack section '{name}'")
        if name == MODEL_SECTION:
            return IntervalModel.from_bytes(array_to_bytes(arrays[name]))
        if name == WARNINGS_SECTION:
            return [str(w) for w in arrays[name]]
        return counter_from_bytes(array_to_bytes(arrays[name]))

    def __repr__(self) -> str:
        return (f"TreatmentInternals(members={self.member_counter.total()}, "
                f"outliers={self.outlier_counter.total()}, "
                f"missing_groups={self.missing_groups_counter.total()}, "
                f"warnings={len(self.warnings)})")
