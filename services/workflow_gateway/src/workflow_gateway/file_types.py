from urllib.parse import urlsplit

DEFAULT_FILE_TYPE = "image"

_EXTENSION_TYPES: dict[str, str] = {}
for _file_type, _extensions in {
    "image": ("jpg", "jpeg", "png", "gif", "webp", "svg", "bmp", "tiff", "ico", "heic"),
    "document": (
        "txt", "md", "markdown", "pdf", "html", "htm", "xlsx", "xls", "docx", "doc",
        "csv", "eml", "msg", "pptx", "ppt", "xml", "epub", "json",
    ),
    "audio": ("mp3", "m4a", "wav", "webm", "amr", "mpga", "ogg", "flac", "aac"),
    "video": ("mp4", "mov", "mpeg", "avi", "mkv", "wmv"),
}.items():
    for _ext in _extensions:
        _EXTENSION_TYPES[_ext] = _file_type


def file_extension(url: str) -> str:
    """Lower-cased extension of a URL path, or the MIME subtype of a data URI."""
    if url.startswith("data:"):
        mime = url[5:].split(";", 1)[0].split(",", 1)[0]
        subtype = mime.split("/", 1)[1] if "/" in mime else ""
        return subtype.split("+", 1)[0].lower()
    path = urlsplit(url).path
    name = path.rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1].lower()


def file_type_for_extension(extension: str) -> str:
    return _EXTENSION_TYPES.get(extension.lower(), DEFAULT_FILE_TYPE)


def file_type_for_url(url: str) -> str:
    return file_type_for_extension(file_extension(url))
