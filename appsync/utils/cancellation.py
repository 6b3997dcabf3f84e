"""
A cooperative cancellation flag shared between the initiating context and the
transfer workers.
"""

import threading


class CancellationToken:
    """
    Thread-safe one-way flag. Workers check it between file-level operations; it
    may be set from any thread (e.g. a UI or signal handler).
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_canceled(self) -> bool:
        return self._event.is_set()
