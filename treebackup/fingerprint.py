"""Content fingerprints for change detection.

A fingerprint is the hex digest of a file's full byte content. It does not
depend on the file's name, location or metadata, so two files with the same
bytes always share a fingerprint.
"""

from pathlib import Path
import hashlib

from treebackup.config import DEFAULT_CHUNK_SIZE, DEFAULT_HASH_ALGORITHM


class UnreadableError(Exception):
    """Raised when a file cannot be opened or read for hashing."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"Cannot read {path}: {reason}")
        self.path = path
        self.reason = reason


class ContentFingerprinter:
    """
    Streams files through a hashlib digest.

    Files are read in ``chunk_size`` pieces, so memory use does not grow
    with file size.
    """

    def __init__(
        self,
        algorithm: str = DEFAULT_HASH_ALGORITHM,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        """
        Initialize the fingerprinter.

        Args:
            algorithm: Any name accepted by ``hashlib.new``
            chunk_size: Number of bytes read per chunk

        Raises:
            ValueError: If the algorithm is unknown or chunk_size is not positive
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        # Raises ValueError for an unknown algorithm
        if hashlib.new(algorithm).digest_size == 0:
            raise ValueError(
                f"{algorithm} has a variable-length digest; choose a fixed-length algorithm"
            )
        self.algorithm = algorithm
        self.chunk_size = chunk_size

    @property
    def digest_size(self) -> int:
        """Length of the hex digest in characters."""
        return hashlib.new(self.algorithm).digest_size * 2

    def fingerprint(self, path: Path) -> str:
        """
        Compute the content digest of a file.

        Args:
            path: File to hash

        Returns:
            Hex-encoded digest

        Raises:
            UnreadableError: If the file cannot be opened or read
        """
        digest = hashlib.new(self.algorithm)
        try:
            with open(path, "rb") as f:
                for chunk in iter(lambda: f.read(self.chunk_size), b""):
                    digest.update(chunk)
        except OSError as e:
            raise UnreadableError(Path(path), e.strerror or str(e)) from e
        return digest.hexdigest()
