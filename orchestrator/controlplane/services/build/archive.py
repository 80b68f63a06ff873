"""
Source archive repackaging.

Repository archives wrap every file in one top-level directory
("owner-repo-sha/path"). The image builder expects the Dockerfile at the
root of its context, so that directory is removed before staging.
"""
import io
import zipfile


def strip_top_level_directory(data: bytes) -> bytes:
    """
    Rewrite a zip archive with the first path segment of every entry removed.

    Entries without a nested path (the bare "owner-repo-sha/" directory entry
    or stray root-level files) are dropped.

    Raises:
        zipfile.BadZipFile: If data is not a zip archive
    """
    output = io.BytesIO()

    with zipfile.ZipFile(io.BytesIO(data)) as source, \
            zipfile.ZipFile(output, "w", compression=zipfile.ZIP_DEFLATED) as target:
        for info in source.infolist():
            name = info.filename
            first_slash = name.find("/")
            if first_slash < 0 or first_slash == len(name) - 1:
                continue

            new_info = zipfile.ZipInfo(name[first_slash + 1:], date_time=info.date_time)
            new_info.external_attr = info.external_attr
            new_info.compress_type = zipfile.ZIP_DEFLATED

            if info.is_dir():
                target.writestr(new_info, b"")
            else:
                target.writestr(new_info, source.read(info))

    return output.getvalue()
