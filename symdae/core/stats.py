"""Statistics dictionary."""

from typing import Any

from symdae.errors import StatNotSetError


class Statistics(dict):
    """Stat name -> value, filled after evaluate/advance calls."""

    def get_stat(self, name: str) -> Any:
        try:
            return self[name]
        except KeyError:
            raise StatNotSetError(name) from None
