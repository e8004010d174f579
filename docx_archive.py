# docx_archive.py
import io
import zipfile
import zlib
from typing import List

DOCUMENT_PART = "word/document.xml"


class FileFormatError(Exception):
    """The template package cannot be used (fatal, raised before any mutation)."""


class CorruptArchive(FileFormatError):
    pass


class MissingPart(FileFormatError):
    def __init__(self, part_path: str):
        self.part_path = part_path
        super().__init__(f"part not found in archive: {part_path}")


def _open_zip(archive_bytes: bytes) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(io.BytesIO(archive_bytes), "r")
    except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError) as e:
        raise CorruptArchive(f"not a readable zip package: {e}") from e


def _read_entry(zin: zipfile.ZipFile, name: str) -> bytes:
    try:
        return zin.read(name)
    except (zipfile.BadZipFile, zlib.error, NotImplementedError, EOFError) as e:
        raise CorruptArchive(f"cannot decompress {name}: {e}") from e


def list_parts(archive_bytes: bytes) -> List[str]:
    with _open_zip(archive_bytes) as zin:
        return zin.namelist()


def open_part(archive_bytes: bytes, part_path: str = DOCUMENT_PART) -> str:
    """Extract one XML part as text."""
    with _open_zip(archive_bytes) as zin:
        if part_path not in zin.namelist():
            raise MissingPart(part_path)
        data = _read_entry(zin, part_path)
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise CorruptArchive(f"{part_path} is not UTF-8 text: {e}") from e


def replace_part(archive_bytes: bytes, part_path: str, new_text: str) -> bytes:
    """
    Rebuild the package into a new buffer with `part_path` replaced.
    Every other entry keeps its bytes, ZipInfo (timestamp, compression, attrs) and order.
    """
    out = io.BytesIO()
    with _open_zip(archive_bytes) as zin:
        if part_path not in zin.namelist():
            raise MissingPart(part_path)
        with zipfile.ZipFile(out, "w") as zout:
            # preserve archive comment if any
            zout.comment = zin.comment
            for info in zin.infolist():
                if info.filename == part_path:
                    data = new_text.encode("utf-8")
                else:
                    data = _read_entry(zin, info.filename)
                zout.writestr(info, data, compress_type=info.compress_type)
    return out.getvalue()
