"""Helpers for story video links (YouTube and Cloudinary)."""

import re
from typing import Optional

_YOUTUBE_PATTERNS = (
    re.compile(r"(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/)([^&\n?#]+)"),
    re.compile(r"youtube\.com/watch\?.*v=([^&\n?#]+)"),
)
_CLOUDINARY_VIDEO_ID = re.compile(r"/upload/(?:v\d+/)?(.+?)\.")
_VIDEO_EXT = re.compile(r"\.(mp4|mov|avi|wmv|flv|webm)$", re.IGNORECASE)


def extract_youtube_video_id(url: str) -> Optional[str]:
    for pattern in _YOUTUBE_PATTERNS:
        match = pattern.search(url or "")
        if match:
            return match.group(1)
    return None


def is_valid_youtube_url(url: str) -> bool:
    return extract_youtube_video_id(url) is not None


def convert_to_embed_url(url: str) -> str:
    """Return the privacy-enhanced embed URL, or `url` unchanged when not YouTube."""
    video_id = extract_youtube_video_id(url)
    if not video_id:
        return url
    return f"https://www.youtube-nocookie.com/embed/{video_id}"


def is_cloudinary_video(url: str) -> bool:
    return "res.cloudinary.com" in (url or "") and "/video/upload/" in (url or "")


def extract_cloudinary_video_id(url: str) -> Optional[str]:
    match = _CLOUDINARY_VIDEO_ID.search(url or "")
    return match.group(1) if match else None


def generate_video_thumbnail(
    video_url: str,
    quality="auto",
    start_offset="auto",
    crop: str = "fill",
    gravity: str = "auto",
) -> Optional[str]:
    """Derive a jpg frame URL for a Cloudinary-hosted video.

    Cloudinary serves a still frame when the `video/upload` path is
    swapped for `image/upload` with transformation parameters.
    """
    if not is_cloudinary_video(video_url):
        return None
    transformations = ",".join([f"c_{crop}", f"g_{gravity}", f"q_{quality}", f"so_{start_offset}"])
    thumb = video_url.replace("/video/upload/", f"/image/upload/{transformations}/")
    return _VIDEO_EXT.sub(".jpg", thumb)


def format_file_size(num_bytes: int) -> str:
    if num_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    size = float(num_bytes)
    i = 0
    while size >= 1024 and i < len(units) - 1:
        size /= 1024
        i += 1
    return f"{round(size, 2):g} {units[i]}"
