"""
Handles returned when registering forward, backward and tensor hooks.
"""


class RemovableHandle:
    """
    Handle that removes a registered hook from its owner's hook list.

    Can be used as a context manager to keep a hook attached only for
    the duration of a block.
    """

    def __init__(self, hooks, hook):
        self._hooks = hooks
        self._hook = hook

    def remove(self):
        """Detach the hook. Removing twice is a no-op."""
        if self._hook in self._hooks:
            self._hooks.remove(self._hook)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.remove()
