"""Fingerprinting and persistence (mtime-first, hash-verified)."""

from .fingerprint_store import Fingerprint, FingerprintStore
from .fingerprints import FileFingerprint, file_identity, value_digest
from .store import DirectoryBackend, KeyValueBackend, MemoryBackend

__all__ = [
	"DirectoryBackend",
	"FileFingerprint",
	"Fingerprint",
	"FingerprintStore",
	"KeyValueBackend",
	"MemoryBackend",
	"file_identity",
	"value_digest",
]
