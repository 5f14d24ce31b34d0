"""Ethereum address headache tools."""


class LowercaseDict(dict):
    """A dictionary subclass that automatically converts all string keys to lowercase.

    - Ledgers key balances by address and callers mix lowercased and checksum-case addresses

    - Tuple keys, like `(owner, spender)` allowance pairs, get each string member lowercased
    """

    def __init__(self, *args, **kwargs):
        super().__init__()
        if args:
            if len(args) > 1:
                raise TypeError("expected at most 1 argument, got %d" % len(args))
            self.update(args[0])
        if kwargs:
            self.update(kwargs)

    @staticmethod
    def _normalise(key):
        if isinstance(key, str):
            return key.lower()
        if isinstance(key, tuple):
            return tuple(k.lower() if isinstance(k, str) else k for k in key)
        return key

    def __setitem__(self, key, value):
        super().__setitem__(self._normalise(key), value)

    def __getitem__(self, key):
        return super().__getitem__(self._normalise(key))

    def __delitem__(self, key):
        super().__delitem__(self._normalise(key))

    def __contains__(self, key):
        return super().__contains__(self._normalise(key))

    def get(self, key, default=None):
        return super().get(self._normalise(key), default)

    def pop(self, key, *args):
        return super().pop(self._normalise(key), *args)

    def update(self, other=None, **kwargs):
        if other is not None:
            for k, v in other.items() if isinstance(other, dict) else other:
                self[k] = v
        for k, v in kwargs.items():
            self[k] = v

    def setdefault(self, key, default=None):
        return super().setdefault(self._normalise(key), default)
