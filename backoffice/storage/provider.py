from typing import BinaryIO


class StorageProvider:
    name = "abstract"

    def save(self, stream: BinaryIO, key: str) -> int:
        """Persist the stream under key; returns the number of bytes written."""
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError
