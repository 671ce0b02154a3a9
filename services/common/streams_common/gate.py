class ConcurrencyGate:
    """
    Process-wide single slot. At most one pipeline runs at a time; a second
    caller is turned away immediately, never queued.

    All callers share one event loop and try_acquire has no await inside,
    so check-and-set cannot interleave.
    """

    def __init__(self):
        self._busy = False
        self.holder = None
        self.acquisitions = 0

    @property
    def busy(self) -> bool:
        return self._busy

    def try_acquire(self, holder=None) -> bool:
        if self._busy:
            return False
        self._busy = True
        self.holder = holder
        self.acquisitions += 1
        return True

    def release(self):
        if not self._busy:
            raise RuntimeError("gate_release_without_acquire")
        self._busy = False
        self.holder = None


gate = ConcurrencyGate()
