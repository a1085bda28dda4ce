"""
Filesystem existence checks used by the Remote orchestrator.

Inject any implementation with the same two methods, e.g. an in-memory fake
for testing.
"""
import os


class FileSystem:
    """Answers "is there a file / directory at this path" against the real disk."""

    def file_exists_at(self, path: str) -> bool:
        return os.path.isfile(path)

    def directory_exists_at(self, path: str) -> bool:
        return os.path.isdir(path)
