"""Append-only per-feed daily archive and its rotation to durable storage."""

from .writer import ArchiveFile, ArchiveWriter, FileState, append_row
from .uploader import GCSUploader, LocalDirectoryUploader, Uploader, build_uploader
from .rotation import RotationPipeline

__all__ = [
    "ArchiveFile",
    "ArchiveWriter",
    "FileState",
    "append_row",
    "GCSUploader",
    "LocalDirectoryUploader",
    "Uploader",
    "build_uploader",
    "RotationPipeline",
]
