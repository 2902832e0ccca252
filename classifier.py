from __future__ import annotations

import re
from typing import Dict, Pattern, Tuple


CATEGORIES: Tuple[str, ...] = (
    "html",
    "stylesheet",
    "script",
    "image",
    "video",
    "audio",
    "font",
    "flash",
    "plugin",
    "data",
    "document",
    "other",
)
DEFAULT_CATEGORY = "other"
TEXT_CATEGORIES = frozenset({"stylesheet", "script"})

# Evaluated top to bottom, first match wins. Font and plugin rules must stay
# ahead of the generic application/* data rules.
MIME_RULES: Tuple[Tuple[Pattern[str], str], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE), category)
    for pattern, category in (
        (r"^text/html\b", "html"),
        (r"^text/css\b", "stylesheet"),
        (r"^(application|text)/(javascript|ecmascript)\b", "script"),
        (r"^image/", "image"),
        (r"^video/", "video"),
        (r"^audio/", "audio"),
        (r"^font/", "font"),
        (r"^application/(font-woff2?|vnd\.ms-fontobject)\b", "font"),
        (r"^application/x-shockwave-flash\b", "flash"),
        (r"^application/x-director\b", "plugin"),
        (r"^application/x-silverlight-app\b", "plugin"),
        (r"^(application/java-archive|application/x-java-applet)\b", "plugin"),
        (r"^application/vnd\.unity\b", "plugin"),
        (r"^application/json\b", "data"),
        (r"^application/wasm\b", "data"),
        (r"^application/pdf\b", "document"),
        (r"^application/(zip|x-7z-compressed|x-tar|gzip)\b", "data"),
        (r"^application/xml\b", "data"),
        (r"^text/xml\b", "data"),
        (r"^text/map\b", "data"),
    )
)

EXTENSION_GROUPS: Dict[str, Tuple[str, ...]] = {
    "stylesheet": ("css", "scss", "sass", "less"),
    "script": ("js", "mjs", "cjs", "ts", "jsx", "tsx", "coffee", "vue"),
    "image": (
        "png", "jpg", "jpeg", "gif", "webp", "avif", "bmp", "ico", "cur", "tiff", "tif", "svg",
        "apng", "heic", "heif", "jp2", "j2k", "dds", "ppm", "pgm", "pbm", "hdr",
    ),
    "video": (
        "mp4", "webm", "ogv", "m4v", "mkv", "mov", "avi", "flv", "m2v", "ts", "rmvb", "rm",
        "f4v", "f4p", "f4a", "f4b", "3gp", "3g2",
    ),
    "audio": (
        "mp3", "wav", "ogg", "oga", "aac", "m4a", "flac", "opus", "mid", "midi", "ra", "ram",
        "aif", "aiff", "au", "m4b",
    ),
    "font": ("woff", "woff2", "ttf", "otf", "eot", "pfa", "pfb"),
    "flash": ("swf",),
    "plugin": ("jar", "class", "xap", "unity3d", "dcr", "dir", "cab", "ocx"),
    "data": (
        "json", "xml", "zip", "tar", "7z", "wasm", "map", "csv", "tsv", "yaml", "yml", "sqlite",
        "db", "db3",
    ),
    "document": ("txt", "pdf", "rtf", "log", "ini", "conf"),
}

# "ts" appears under both script and video; later groups win, as in a plain
# dict built from the groups in order.
EXTENSION_CATEGORIES: Dict[str, str] = {
    ext: category for category, exts in EXTENSION_GROUPS.items() for ext in exts
}


def extension_of(url: str) -> str:
    path = (url or "").split("?", 1)[0].split("#", 1)[0].lower()
    return path.rsplit(".", 1)[-1]


def classify_mime(mime: str) -> str:
    value = (mime or "").strip()
    if not value:
        return ""
    for pattern, category in MIME_RULES:
        if pattern.search(value):
            return category
    return ""


def classify(url: str = "", mime: str = "") -> str:
    category = classify_mime(mime)
    if category:
        return category
    return EXTENSION_CATEGORIES.get(extension_of(url), DEFAULT_CATEGORY)
