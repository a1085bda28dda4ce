"""
Defines the retrieval strategy port.

The Remote orchestrator talks to retrieval strategies ONLY through this
interface. Concrete implementations live in sourcecache.adapters.
"""
from abc import abstractmethod
from typing import Protocol


class Getter(Protocol):
    """
    The interface (port) for anything that can materialize a source string
    into a destination directory.
    """

    @abstractmethod
    def get(self, wd: str, src: str, dst: str) -> None:
        """
        Retrieve `src` into the directory `dst`.

        Args:
            wd: Working directory used to resolve relative local sources.
            src: The source string to retrieve.
            dst: Destination directory. Created by the getter.

        Raises:
            RetrievalError: on any network, storage or filesystem failure.
        """
        ...
