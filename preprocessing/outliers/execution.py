"""
Execution Context

Cooperative cancellation and progress reporting for long running
outlier computations.
"""

from typing import Callable, Iterable, Iterator, Optional, TypeVar
import threading
import logging
from tqdm import tqdm

from .exceptions import CanceledExecutionError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class ExecutionContext:
    """
    Handle passed into every long running operation.

    Cancellation is cooperative: workers call check_canceled() (directly or
    through iterate()) and stop with CanceledExecutionError once cancel()
    has been called. Sub contexts share the cancellation flag of their
    parent and report progress into a weighted slice of it.

    Attributes:
        progress (float): Progress fraction in [0, 1]
        message (Optional[str]): Last progress message
        show_progress (bool): Display tqdm progress bars in iterate()
    """

    def __init__(
        self,
        progress_callback: Optional[Callable[[float, Optional[str]], None]] = None,
        show_progress: bool = False,
        _cancel_event: Optional[threading.Event] = None,
        _parent: Optional['ExecutionContext'] = None,
        _offset: float = 0.0,
        _weight: float = 1.0
    ):
        """
        Initialize execution context.

        Args:
            progress_callback: Called with (fraction, message) on progress
            show_progress: Show tqdm progress bars while iterating
        """
        self.progress_callback = progress_callback
        self.show_progress = show_progress
        self._cancel_event = _cancel_event or threading.Event()
        self._parent = _parent
        self._offset = _offset
        self._weight = _weight
        self._children_weight = 0.0
        self.progress = 0.0
        self.message: Optional[str] = None

    def cancel(self) -> None:
        """Request cancellation of every operation using this context."""
        self._cancel_event.set()

    @property
    def canceled(self) -> bool:
        return self._cancel_event.is_set()

    def check_canceled(self) -> None:
        """
        Raises:
            CanceledExecutionError: If cancellation has been requested
        """
        if self._cancel_event.is_set():
            raise CanceledExecutionError()

    def set_progress(self, fraction: float, message: Optional[str] = None) -> None:
        """
        Report progress.

        Args:
            fraction: Completed fraction of this context's work
            message: Optional progress message
        """
        fraction = min(max(float(fraction), 0.0), 1.0)
        self.progress = fraction
        if message is not None:
            self.message = message

        if self._parent is not None:
            self._parent.set_progress(self._offset + fraction * self._weight, message)
        elif self.progress_callback is not None:
            self.progress_callback(fraction, message)

    def set_message(self, message: str) -> None:
        self.set_progress(self.progress, message)

    def create_sub_context(self, weight: float) -> 'ExecutionContext':
        """
        Create a child context covering the next `weight` of this context.

        Args:
            weight: Share of this context's progress (0 to 1)

        Returns:
            ExecutionContext sharing the cancellation flag
        """
        if weight < 0:
            raise ValueError(f"weight must be non-negative, got {weight}")

        offset = self._children_weight
        self._children_weight = min(1.0, self._children_weight + weight)
        return ExecutionContext(
            show_progress=self.show_progress,
            _cancel_event=self._cancel_event,
            _parent=self,
            _offset=offset,
            _weight=weight
        )

    def iterate(
        self,
        items: Iterable[T],
        total: Optional[int] = None,
        desc: Optional[str] = None
    ) -> Iterator[T]:
        """
        Iterate items, checking cancellation and reporting progress per item.

        Args:
            items: Items to iterate
            total: Number of items if known (enables fractional progress)
            desc: Label for the progress bar

        Yields:
            Items in order
        """
        if total is not None and total < 0:
            total = None

        iterator = tqdm(items, total=total, desc=desc, leave=False) if self.show_progress else items

        count = 0
        for item in iterator:
            self.check_canceled()
            yield item
            count += 1
            if total:
                self.set_progress(count / total)

        if desc:
            logger.debug("%s: processed %d items", desc, count)
