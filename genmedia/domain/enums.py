from __future__ import annotations

from enum import Enum


class JobStatus(str, Enum):
    pending = "pending"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    timed_out = "timedOut"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.succeeded, JobStatus.failed, JobStatus.timed_out)


class RecordStatus(str, Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RecordStatus.completed, RecordStatus.failed)


class MediaKind(str, Enum):
    image = "image"
    video = "video"
    text = "text"


class Dispatch(str, Enum):
    inline = "inline"  # poll loop owned by the submitting request
    worker = "worker"  # poll loop owned by generation_worker


class StorageCategory(str, Enum):
    generated_images = "generated-images"
    generated_videos = "generated-videos"
    multi_generate_images = "multi-generate-images"
    multi_generate_videos = "multi-generate-videos"
    connected_videos = "connected-videos"
    news_videos = "news-videos"
    uploads = "uploads"

    @property
    def path_segment(self) -> str:
        return _CATEGORY_PATHS[self]


_CATEGORY_PATHS = {
    StorageCategory.generated_images: "uploads/images/generate",
    StorageCategory.generated_videos: "uploads/videos/generate",
    StorageCategory.multi_generate_images: "uploads/images/multi-generate",
    StorageCategory.multi_generate_videos: "uploads/videos/multi-generate",
    StorageCategory.connected_videos: "uploads/videos/connected-videos",
    StorageCategory.news_videos: "uploads/videos/news",
    StorageCategory.uploads: "uploads/files",
}


class ErrorCode(str, Enum):
    submit_failed = "SUBMIT_FAILED"
    vendor_failed = "VENDOR_FAILED"
    timeout = "TIMEOUT"
    materialize_failed = "MATERIALIZE_FAILED"
    worker_crash = "WORKER_CRASH"
    internal_error = "INTERNAL_ERROR"
